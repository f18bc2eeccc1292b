from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Query

from ..logging_config import get_logger
from ..services.statistics import StatisticsService, list_categories
from ..services.transfers import TransferRequest, TransferService
from .deps import get_current_account_id, get_db
from .schemas import (
    PostingOut,
    StatsOut,
    TransactionCreate,
    TransactionOut,
    TransactionPageOut,
    TransactionUpdate,
    TransferIn,
    TransferOut,
    TransferPreviewOut,
)
from .serializers import serialize_page, serialize_preview, serialize_stats, serialize_transfer, serialize_tx

logger = get_logger("ledger_bank.api.transactions")

router = APIRouter(tags=["transactions"])


def _transfer_request(payload: TransferIn, idempotency_key: Optional[str]) -> TransferRequest:
    return TransferRequest(
        amount=payload.amount,
        recipient_account=payload.recipient_account,
        recipient_phone=payload.recipient_phone,
        recipient_bank=payload.recipient_bank.model_dump() if payload.recipient_bank else None,
        recipient_name=payload.recipient_name,
        description=payload.description,
        idempotency_key=payload.idempotency_key or idempotency_key,
    )


@router.get("/transactions", response_model=TransactionPageOut)
async def get_transactions(
    entry_type: Optional[str] = Query(None, alias="type"),
    category: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
    account_id: UUID = Depends(get_current_account_id),
    db=Depends(get_db),
):
    """
    Paginated transaction history for the caller, newest first.
    """
    result = await StatisticsService(db).list_transactions(
        account_id,
        entry_type=entry_type,
        category=category,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return serialize_page(result)


@router.post("/transactions", response_model=PostingOut, status_code=201)
async def create_transaction(
    payload: TransactionCreate,
    idempotency_key: Optional[str] = Header(None),
    account_id: UUID = Depends(get_current_account_id),
    db=Depends(get_db),
):
    """
    Deposit (type=credit) or withdraw (type=debit) against the caller's balance.
    """
    logger.info("Posting %s amount=%s account_id=%s", payload.type, payload.amount, account_id)
    service = TransferService(db)
    op = service.deposit if payload.type == "credit" else service.withdraw
    result = await op(
        account_id,
        payload.amount,
        description=payload.description,
        category=payload.category,
        idempotency_key=payload.idempotency_key or idempotency_key,
    )
    return {"transaction": serialize_tx(result.transaction), "replayed": result.replayed}


@router.post("/transactions/transfer", response_model=TransferOut, status_code=201)
async def transfer_money(
    payload: TransferIn,
    idempotency_key: Optional[str] = Header(None),
    account_id: UUID = Depends(get_current_account_id),
    db=Depends(get_db),
):
    """
    Transfer to another account in this bank (internal) or to an outside bank (external).
    """
    logger.info(
        "Transfer request from=%s to_account=%s to_phone=%s amount=%s",
        account_id,
        payload.recipient_account,
        payload.recipient_phone,
        payload.amount,
    )
    result = await TransferService(db).transfer(account_id, _transfer_request(payload, idempotency_key))
    return serialize_transfer(result)


@router.post("/transactions/validate-transfer", response_model=TransferPreviewOut)
async def validate_transfer(
    payload: TransferIn,
    account_id: UUID = Depends(get_current_account_id),
    db=Depends(get_db),
):
    """
    Fee and total for a transfer, without moving any money.
    """
    preview = await TransferService(db).preview_transfer(account_id, _transfer_request(payload, None))
    return serialize_preview(preview)


@router.get("/transactions/stats", response_model=StatsOut)
async def get_transaction_stats(
    period: str = "month",
    account_id: UUID = Depends(get_current_account_id),
    db=Depends(get_db),
):
    stats = await StatisticsService(db).get_stats(account_id, period)
    return serialize_stats(stats)


@router.get("/transactions/categories", response_model=List[str])
async def get_transaction_categories():
    return list_categories()


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
async def get_transaction(
    transaction_id: UUID,
    account_id: UUID = Depends(get_current_account_id),
    db=Depends(get_db),
):
    tx = await StatisticsService(db).get_transaction(account_id, transaction_id)
    return serialize_tx(tx)


@router.put("/transactions/{transaction_id}", response_model=TransactionOut)
async def update_transaction(
    transaction_id: UUID,
    payload: TransactionUpdate,
    account_id: UUID = Depends(get_current_account_id),
    db=Depends(get_db),
):
    """
    Only description and category can change once a transaction exists.
    """
    tx = await StatisticsService(db).update_transaction(
        account_id,
        transaction_id,
        description=payload.description,
        category=payload.category,
    )
    return serialize_tx(tx)
