from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException

from .. import settings
from ..logging_config import get_logger
from ..security import create_access_token
from ..services.accounts import AccountService, NewAccount
from ..services.statistics import StatisticsService
from .deps import get_current_account_id, get_db
from .schemas import AccountCreate, AccountCreated, AccountOut, ReconciliationOut, SeedOut
from .serializers import serialize_account, serialize_reconciliation

logger = get_logger("ledger_bank.api.accounts")

router = APIRouter(tags=["accounts"])

DEMO_ACCOUNTS = [
    {
        "name": "John Doe",
        "email": "john.doe@email.com",
        "phone": "9990001111",
        "initial_deposit": "5000.00",
        "bank_name": "Ledger Bank",
        "ifsc_code": "LDGR0000001",
        "branch_name": "Main",
    },
    {
        "name": "Jane Smith",
        "email": "jane.smith@email.com",
        "phone": "9990002222",
        "initial_deposit": "5500.00",
        "bank_name": "Ledger Bank",
        "ifsc_code": "LDGR0000001",
        "branch_name": "Main",
    },
    # Shares Jane's phone so phone transfers need an explicit account number
    {
        "name": "Jane Smith (Savings)",
        "email": "jane.savings@email.com",
        "phone": "9990002222",
        "initial_deposit": "1000.00",
        "bank_name": "Ledger Bank",
        "ifsc_code": "LDGR0000002",
        "branch_name": "Riverside",
    },
    {
        "name": "Mike Wilson",
        "email": "mike.wilson@email.com",
        "phone": "9990003333",
        "initial_deposit": "6000.00",
        "bank_name": "Ledger Bank",
        "ifsc_code": "LDGR0000001",
        "branch_name": "Main",
    },
]


@router.post("/accounts", response_model=AccountCreated, status_code=201)
async def open_account(payload: AccountCreate, db=Depends(get_db)):
    """
    Open an account; a positive initial deposit is posted as its first credit.
    """
    bank = payload.bank
    account = await AccountService(db).open_account(
        NewAccount(
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
            initial_deposit=payload.initial_deposit,
            bank_name=bank.bank_name if bank else None,
            ifsc_code=bank.ifsc_code if bank else None,
            branch_name=bank.branch_name if bank else None,
        )
    )
    return {
        "account": serialize_account(account),
        "access_token": create_access_token(account.account_id),
        "token_type": "bearer",
    }


@router.get("/accounts/me", response_model=AccountOut)
async def get_my_account(account_id: UUID = Depends(get_current_account_id), db=Depends(get_db)):
    account = await AccountService(db).get_account(account_id)
    return serialize_account(account)


@router.get("/accounts/me/reconciliation", response_model=ReconciliationOut)
async def reconcile_my_account(account_id: UUID = Depends(get_current_account_id), db=Depends(get_db)):
    """
    Compare the stored balance with the ledger's signed total.
    """
    report = await StatisticsService(db).reconcile(account_id)
    return serialize_reconciliation(report)


@router.post("/admin/seed", response_model=SeedOut)
async def seed_demo(token: str = Body(..., embed=True), db=Depends(get_db)):
    """
    Simple idempotent seeding of demo accounts.
    Protected by SIMPLE_ADMIN_TOKEN in environment.
    """
    if token != settings.SIMPLE_ADMIN_TOKEN:
        logger.warning("Admin seed unauthorized attempt")
        raise HTTPException(status_code=401, detail="Unauthorized")

    created = await AccountService(db).seed_demo(DEMO_ACCOUNTS)
    logger.info("Admin seed complete; created=%s accounts", created)
    return {"seeded_accounts_created": created}
