"""
Account opening and lookup.

Accounts always open at a zero balance; an initial deposit is posted as a
regular credit so the ledger alone explains every balance.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Account, AccountStatus, EntryType
from ..logging_config import get_logger
from .errors import AccountNotFound, DuplicateAccount, InvalidAmount, PhoneAccountLimit
from .money import MAX_AMOUNT, round2, to_decimal
from .transfers import RESERVED_KEY_PREFIX, TransferService, request_fingerprint

logger = get_logger("ledger_bank.services.accounts")

MAX_ACCOUNTS_PER_PHONE = 3
INITIAL_DEPOSIT_KEY = f"{RESERVED_KEY_PREFIX}initial-deposit"


@dataclass
class NewAccount:
    name: str
    email: str
    phone: Optional[str] = None
    initial_deposit: Any = 0
    bank_name: Optional[str] = None
    ifsc_code: Optional[str] = None
    branch_name: Optional[str] = None


class AccountService:
    def __init__(self, db: AsyncSession, transfers: Optional[TransferService] = None):
        self.db = db
        self.transfers = transfers or TransferService(db)

    async def _generate_account_number(self) -> str:
        res = await self.db.execute(select(func.count()).select_from(Account))
        count = res.scalar_one() or 0
        candidate = f"ACC{count + 1:06d}"
        taken = await self.db.execute(select(Account.account_id).where(Account.account_number == candidate))
        if taken.scalars().first() is None:
            return candidate
        logger.warning("Account number %s already taken; using random suffix", candidate)
        return f"ACC{uuid4().hex[:8].upper()}"

    async def open_account(self, data: NewAccount) -> Account:
        initial = to_decimal(data.initial_deposit or 0)
        if initial < 0:
            raise InvalidAmount("Initial deposit cannot be negative")
        if initial > MAX_AMOUNT or round2(initial) > MAX_AMOUNT:
            raise InvalidAmount(f"Initial deposit cannot exceed {MAX_AMOUNT}")
        initial = round2(initial)

        email = data.email.strip().lower()
        phone = data.phone.strip() if data.phone else None

        async with self.db.begin():
            dup = await self.db.execute(select(Account.account_id).where(func.lower(Account.email) == email))
            if dup.scalars().first() is not None:
                logger.warning("Email already registered email=%s", email)
                raise DuplicateAccount()

            if phone:
                cnt = await self.db.execute(select(func.count()).select_from(Account).where(Account.phone == phone))
                if (cnt.scalar_one() or 0) >= MAX_ACCOUNTS_PER_PHONE:
                    logger.warning("Phone account limit reached phone=%s", phone)
                    raise PhoneAccountLimit()

            now_ts = datetime.utcnow()
            account = Account(
                account_id=uuid4(),
                account_number=await self._generate_account_number(),
                name=data.name.strip(),
                email=email,
                phone=phone,
                balance=Decimal("0.00"),
                status=AccountStatus.ACTIVE,
                bank_name=data.bank_name,
                ifsc_code=data.ifsc_code,
                branch_name=data.branch_name,
                created_at=now_ts,
                updated_at=now_ts,
            )
            self.db.add(account)
            await self.db.flush()

            if initial > 0:
                self.transfers.apply_posting(
                    account,
                    EntryType.CREDIT,
                    initial,
                    "Initial deposit",
                    "deposit",
                    idempotency_key=INITIAL_DEPOSIT_KEY,
                    fingerprint=request_fingerprint(EntryType.CREDIT, initial),
                )

        logger.info("Opened account %s for %s initial_deposit=%s", account.account_number, email, initial)
        return account

    async def get_account(self, account_id: UUID) -> Account:
        res = await self.db.execute(select(Account).where(Account.account_id == account_id))
        account = res.scalars().first()
        if account is None:
            raise AccountNotFound()
        return account

    async def seed_demo(self, accounts: List[Dict[str, Any]]) -> int:
        """
        Idempotently open the given demo accounts (matched by email).
        """
        created = 0
        for spec in accounts:
            res = await self.db.execute(
                select(Account.account_id).where(Account.email == spec["email"].lower())
            )
            exists = res.scalars().first()
            # close the read transaction before open_account starts its own
            await self.db.commit()
            if exists:
                continue
            await self.open_account(NewAccount(**spec))
            created += 1
        return created
