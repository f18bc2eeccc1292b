"""
Read-side queries over the ledger: history pages, period statistics and
balance reconciliation. Nothing here changes a balance.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import case, distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import TRANSACTION_CATEGORIES, Account, EntryType, Transaction
from ..logging_config import get_logger
from .errors import AccountNotFound, InvalidCategory, NotAuthorized, TransactionNotFound
from .money import round2
from .transfers import normalize_category

logger = get_logger("ledger_bank.services.statistics")

PERIODS = ("week", "month", "year")
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class TransactionPage:
    items: List[Transaction]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class PeriodStats:
    period: str
    start_date: datetime
    total_credits: Decimal
    total_debits: Decimal
    transaction_count: int
    categories: List[str] = field(default_factory=list)


@dataclass
class Reconciliation:
    account_number: str
    balance: Decimal
    ledger_total: Decimal
    drift: Decimal

    @property
    def consistent(self) -> bool:
        return self.drift == 0


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """
    Start boundary of a statistics period; unknown periods fall back to month.
    """
    now = now or datetime.utcnow()
    if period == "week":
        return now - timedelta(days=7)
    if period == "year":
        return datetime(now.year, 1, 1)
    return datetime(now.year, now.month, 1)


def list_categories() -> List[str]:
    return list(TRANSACTION_CATEGORIES)


class StatisticsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_transactions(
        self,
        account_id: UUID,
        entry_type: Optional[str] = None,
        category: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionPage:
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)

        conditions = [Transaction.account_id == account_id]
        if entry_type:
            conditions.append(Transaction.entry_type == entry_type)
        # credits are not categorised by spending category
        if category and entry_type != EntryType.CREDIT:
            if category not in TRANSACTION_CATEGORIES:
                raise InvalidCategory(f"Unknown transaction category: {category}")
            conditions.append(Transaction.category == category)
        if start_date:
            conditions.append(Transaction.created_at >= start_date)
        if end_date:
            conditions.append(Transaction.created_at <= end_date)

        total_res = await self.db.execute(select(func.count()).select_from(Transaction).where(*conditions))
        total = total_res.scalar_one() or 0

        stmt = (
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.created_at.desc(), Transaction.transaction_reference.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        res = await self.db.execute(stmt)
        items = list(res.scalars().all())
        logger.info(
            "Listed transactions account_id=%s page=%s limit=%s returned=%s total=%s",
            account_id,
            page,
            limit,
            len(items),
            total,
        )
        return TransactionPage(items=items, page=page, limit=limit, total=total)

    async def get_transaction(self, account_id: UUID, transaction_id: UUID) -> Transaction:
        res = await self.db.execute(select(Transaction).where(Transaction.transaction_id == transaction_id))
        tx = res.scalars().first()
        if tx is None:
            raise TransactionNotFound()
        if tx.account_id != account_id:
            logger.warning("Account %s tried to read transaction %s", account_id, transaction_id)
            raise NotAuthorized()
        return tx

    async def update_transaction(
        self,
        account_id: UUID,
        transaction_id: UUID,
        description: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Transaction:
        """
        Edit the non-financial fields of a transaction.
        Amount, type and balance snapshot are immutable.
        """
        async with self.db.begin():
            tx = await self.get_transaction(account_id, transaction_id)
            if description is not None and description.strip():
                tx.description = description.strip()
            if category is not None:
                tx.category = normalize_category(category, tx.category)
            tx.updated_at = datetime.utcnow()
        logger.info("Updated transaction %s description/category", transaction_id)
        return tx

    async def get_stats(self, account_id: UUID, period: str = "month") -> PeriodStats:
        if period not in PERIODS:
            period = "month"
        start = period_start(period)

        credit_sum = func.sum(case((Transaction.entry_type == EntryType.CREDIT, Transaction.amount), else_=0))
        debit_sum = func.sum(case((Transaction.entry_type == EntryType.DEBIT, Transaction.amount), else_=0))
        window = (Transaction.account_id == account_id, Transaction.created_at >= start)

        res = await self.db.execute(
            select(credit_sum, debit_sum, func.count(Transaction.transaction_id)).where(*window)
        )
        credits, debits, count = res.one()

        cat_res = await self.db.execute(
            select(distinct(Transaction.category))
            .where(*window, Transaction.entry_type != EntryType.CREDIT)
            .order_by(Transaction.category)
        )
        categories = [c for c in cat_res.scalars().all() if c]

        return PeriodStats(
            period=period,
            start_date=start,
            total_credits=round2(credits),
            total_debits=round2(debits),
            transaction_count=count or 0,
            categories=categories,
        )

    async def reconcile(self, account_id: UUID) -> Reconciliation:
        """
        Compare the stored balance with the signed sum of the account's ledger.
        Accounts open at zero, so the two must match.
        """
        acct_res = await self.db.execute(select(Account).where(Account.account_id == account_id))
        account = acct_res.scalars().first()
        if account is None:
            raise AccountNotFound()

        signed = func.sum(
            case(
                (Transaction.entry_type == EntryType.CREDIT, Transaction.amount),
                else_=-Transaction.amount,
            )
        )
        res = await self.db.execute(select(signed).where(Transaction.account_id == account_id))
        ledger_total = round2(res.scalar_one())
        balance = round2(account.balance)
        drift = round2(balance - ledger_total)
        if drift != 0:
            logger.warning(
                "Ledger drift for account=%s balance=%s ledger_total=%s drift=%s",
                account.account_number,
                balance,
                ledger_total,
                drift,
            )
        return Reconciliation(
            account_number=account.account_number,
            balance=balance,
            ledger_total=ledger_total,
            drift=drift,
        )
