"""
Transfer engine: the only code path that changes an account balance.

Each mutation runs inside one database transaction that re-reads the
affected account rows with FOR UPDATE while holding the in-process account
locks. Balance writes and ledger rows therefore commit or roll back
together; an internal transfer can never leave the sender debited without
the recipient credited.

Planning (amount validation, recipient resolution, fee calculation) is
shared between the committing transfer and the read-only preview so both
always quote the same numbers.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import TRANSACTION_CATEGORIES, Account, AccountStatus, EntryType, Transaction, TransferType
from ..logging_config import get_logger
from .errors import (
    AccountNotActive,
    AccountNotFound,
    CannotTransferToSelf,
    IdempotencyConflict,
    InsufficientBalance,
    InvalidCategory,
    InvalidIdempotencyKey,
    MissingExternalBankDetails,
    RecipientAmbiguous,
)
from .fees import compute_fee, total_debit
from .locks import AccountLockRegistry, account_locks
from .money import format_money, parse_amount, round2
from .recipients import Ambiguous, Resolved, resolve_recipient

logger = get_logger("ledger_bank.services.transfers")

ARRIVAL_INSTANT = "Instant"
ARRIVAL_EXTERNAL = "2-3 business days"
MAX_DESCRIPTION = 200
RESERVED_KEY_PREFIX = "ledger:"


@dataclass
class TransferRequest:
    amount: Any
    recipient_account: Optional[str] = None
    recipient_phone: Optional[str] = None
    recipient_bank: Optional[Dict[str, Any]] = None
    recipient_name: Optional[str] = None
    description: Optional[str] = None
    idempotency_key: Optional[str] = None


@dataclass
class TransferPlan:
    sender: Account
    recipient: Optional[Account]
    amount: Decimal
    fee: Decimal
    total_debit: Decimal
    recipient_bank: Optional[Dict[str, Any]] = None

    @property
    def is_internal(self) -> bool:
        return self.recipient is not None

    @property
    def transfer_type(self) -> str:
        return TransferType.INTERNAL if self.is_internal else TransferType.EXTERNAL

    @property
    def estimated_arrival(self) -> str:
        return ARRIVAL_INSTANT if self.is_internal else ARRIVAL_EXTERNAL


@dataclass
class TransferPreview:
    transfer_amount: Decimal
    processing_fee: Decimal
    total_debit: Decimal
    transfer_type: str
    recipient_found: bool
    recipient_name: str
    recipient_bank: Optional[Dict[str, Any]]
    sender_balance: Decimal
    has_sufficient_balance: bool
    estimated_arrival: str
    message: str


@dataclass
class TransferResult:
    transaction: Transaction
    transfer_type: str
    transfer_amount: Decimal
    processing_fee: Decimal
    total_debited: Decimal
    estimated_arrival: str
    message: str
    counterpart_transaction: Optional[Transaction] = None
    replayed: bool = False


@dataclass
class PostingResult:
    transaction: Transaction
    replayed: bool = False


def new_reference() -> str:
    return f"TXN{uuid4().hex[:10].upper()}"


def normalize_category(value: Optional[str], default: str) -> str:
    if value is None or not str(value).strip():
        return default
    category = str(value).strip().lower()
    if category not in TRANSACTION_CATEGORIES:
        raise InvalidCategory(f"Unknown transaction category: {value}")
    return category


def _clip(text: str) -> str:
    return text[:MAX_DESCRIPTION]


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def request_fingerprint(*parts: Any) -> str:
    canonical = "|".join("" if part is None else str(part).strip() for part in parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _client_key(value: Optional[str]) -> Optional[str]:
    key = _clean(value)
    if key is not None and key.startswith(RESERVED_KEY_PREFIX):
        raise InvalidIdempotencyKey()
    return key


def _check_fingerprint(tx: Transaction, fingerprint: str) -> None:
    if tx.request_fingerprint and tx.request_fingerprint != fingerprint:
        logger.warning("Idempotency key %s reused with a different request", tx.idempotency_key)
        raise IdempotencyConflict("Idempotency key was already used with a different request")


def _ensure_active(account: Account, role: str = "Account") -> None:
    if account.status != AccountStatus.ACTIVE:
        logger.warning("%s %s is %s; money movement refused", role, account.account_number, account.status)
        raise AccountNotActive(f"{role} is {account.status}")


class TransferService:
    """
    Deposits, withdrawals and transfers against account balances.
    """

    def __init__(self, db: AsyncSession, locks: AccountLockRegistry = account_locks):
        self.db = db
        self.locks = locks

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------

    async def _load_account(self, account_id: UUID, for_update: bool = False) -> Account:
        stmt = (
            select(Account)
            .where(Account.account_id == account_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()
        res = await self.db.execute(stmt)
        account = res.scalars().first()
        if account is None:
            logger.warning("Account not found account_id=%s", account_id)
            raise AccountNotFound()
        return account

    async def _find_replay(self, account_id: UUID, idempotency_key: Optional[str]) -> Optional[Transaction]:
        if not idempotency_key:
            return None
        stmt = select(Transaction).where(
            Transaction.account_id == account_id,
            Transaction.idempotency_key == idempotency_key,
        )
        res = await self.db.execute(stmt)
        return res.scalars().first()

    # ------------------------------------------------------------------
    # deposit / withdraw
    # ------------------------------------------------------------------

    async def deposit(
        self,
        account_id: UUID,
        amount: Any,
        description: Optional[str] = None,
        category: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PostingResult:
        return await self._post(account_id, EntryType.CREDIT, amount, description, category, idempotency_key)

    async def withdraw(
        self,
        account_id: UUID,
        amount: Any,
        description: Optional[str] = None,
        category: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PostingResult:
        return await self._post(account_id, EntryType.DEBIT, amount, description, category, idempotency_key)

    async def _post(
        self,
        account_id: UUID,
        entry_type: str,
        amount: Any,
        description: Optional[str],
        category: Optional[str],
        idempotency_key: Optional[str],
    ) -> PostingResult:
        amount = parse_amount(amount)
        default_category = "deposit" if entry_type == EntryType.CREDIT else "withdrawal"
        category = normalize_category(category, default_category)
        idempotency_key = _client_key(idempotency_key)
        fingerprint = request_fingerprint(entry_type, amount)

        try:
            async with self.locks.hold([account_id]):
                async with self.db.begin():
                    account = await self._load_account(account_id, for_update=True)
                    existing = await self._find_replay(account_id, idempotency_key)
                    if existing is not None:
                        if existing.entry_type != entry_type or existing.transfer_type is not None:
                            raise IdempotencyConflict()
                        _check_fingerprint(existing, fingerprint)
                        logger.info(
                            "Replaying %s for account=%s key=%s",
                            entry_type,
                            account.account_number,
                            idempotency_key,
                        )
                        return PostingResult(existing, replayed=True)
                    tx = self.apply_posting(
                        account, entry_type, amount, description, category, idempotency_key, fingerprint
                    )
        except SQLAlchemyError:
            logger.exception("%s failed (DB error) account_id=%s", entry_type, account_id)
            raise

        logger.info(
            "%s posted account=%s amount=%s balance_after=%s ref=%s",
            entry_type,
            account.account_number,
            amount,
            tx.balance_after,
            tx.transaction_reference,
        )
        return PostingResult(tx)

    def apply_posting(
        self,
        account: Account,
        entry_type: str,
        amount: Decimal,
        description: Optional[str],
        category: str,
        idempotency_key: Optional[str] = None,
        fingerprint: Optional[str] = None,
    ) -> Transaction:
        """
        Mutate a locked account and stage its ledger row.
        The caller owns the surrounding database transaction.
        """
        _ensure_active(account)
        balance = round2(account.balance)
        if entry_type == EntryType.DEBIT:
            if amount > balance:
                logger.warning(
                    "Withdrawal refused - insufficient funds account=%s balance=%s amount=%s",
                    account.account_number,
                    balance,
                    amount,
                )
                raise InsufficientBalance()
            new_balance = round2(balance - amount)
            default_description = "Withdrawal"
        else:
            new_balance = round2(balance + amount)
            default_description = "Deposit"

        now_ts = datetime.utcnow()
        account.balance = new_balance
        account.updated_at = now_ts

        tx = Transaction(
            transaction_id=uuid4(),
            transaction_reference=new_reference(),
            account_id=account.account_id,
            entry_type=entry_type,
            transfer_type=None,
            amount=amount,
            fee=Decimal("0.00"),
            balance_after=new_balance,
            description=_clip(description or default_description),
            category=category,
            status="completed",
            idempotency_key=idempotency_key,
            request_fingerprint=fingerprint,
            created_at=now_ts,
            updated_at=now_ts,
        )
        self.db.add(tx)
        return tx

    # ------------------------------------------------------------------
    # transfers
    # ------------------------------------------------------------------

    async def _plan(self, sender_id: UUID, request: TransferRequest) -> TransferPlan:
        amount = parse_amount(request.amount)

        sender = await self._load_account(sender_id)
        _ensure_active(sender, "Sender account")

        resolution = await resolve_recipient(self.db, request.recipient_account, request.recipient_phone)
        if isinstance(resolution, Ambiguous):
            raise RecipientAmbiguous(resolution.candidates)

        recipient = resolution.account if isinstance(resolution, Resolved) else None
        recipient_bank = None
        if recipient is None:
            bank = {k: v for k, v in (request.recipient_bank or {}).items() if v}
            if not bank.get("bank_name"):
                raise MissingExternalBankDetails()
            if not (_clean(request.recipient_account) or _clean(request.recipient_phone)):
                raise MissingExternalBankDetails(
                    "Recipient account number or phone is required for external transfers"
                )
            recipient_bank = bank
        else:
            if recipient.account_id == sender.account_id:
                logger.warning("Self-transfer refused account=%s", sender.account_number)
                raise CannotTransferToSelf()
            _ensure_active(recipient, "Recipient account")

        fee = compute_fee(amount, recipient is not None)
        return TransferPlan(
            sender=sender,
            recipient=recipient,
            amount=amount,
            fee=fee,
            total_debit=total_debit(amount, fee),
            recipient_bank=recipient_bank,
        )

    async def preview_transfer(self, sender_id: UUID, request: TransferRequest) -> TransferPreview:
        """
        Quote a transfer without touching any balance.
        """
        async with self.db.begin():
            plan = await self._plan(sender_id, request)

        balance = round2(plan.sender.balance)
        sufficient = balance >= plan.total_debit
        if sufficient:
            message = f"Transfer preview: {format_money(plan.amount)} transfer"
            if plan.fee > 0:
                message += f" + {format_money(plan.fee)} fee = {format_money(plan.total_debit)} total"
        else:
            message = "Insufficient balance for this transfer"

        return TransferPreview(
            transfer_amount=plan.amount,
            processing_fee=plan.fee,
            total_debit=plan.total_debit,
            transfer_type=plan.transfer_type,
            recipient_found=plan.is_internal,
            recipient_name=plan.recipient.name if plan.is_internal else (request.recipient_name or "External Account"),
            recipient_bank=plan.recipient.bank_details if plan.is_internal else plan.recipient_bank,
            sender_balance=balance,
            has_sufficient_balance=sufficient,
            estimated_arrival=plan.estimated_arrival,
            message=message,
        )

    async def transfer(self, sender_id: UUID, request: TransferRequest) -> TransferResult:
        amount = parse_amount(request.amount)
        idempotency_key = _client_key(request.idempotency_key)
        bank_name = (request.recipient_bank or {}).get("bank_name")
        fingerprint = request_fingerprint(
            "transfer", amount, request.recipient_account, request.recipient_phone, bank_name
        )

        async with self.db.begin():
            existing = await self._find_replay(sender_id, idempotency_key)
            if existing is not None:
                return self._replayed(existing, fingerprint)
            plan = await self._plan(sender_id, request)

        recipient_id = plan.recipient.account_id if plan.recipient else None
        try:
            async with self.locks.hold([sender_id, recipient_id]):
                async with self.db.begin():
                    locked = {}
                    for account_id in sorted({sender_id, recipient_id} - {None}, key=str):
                        locked[account_id] = await self._load_account(account_id, for_update=True)

                    existing = await self._find_replay(sender_id, idempotency_key)
                    if existing is not None:
                        return self._replayed(existing, fingerprint)

                    sender = locked[sender_id]
                    recipient = locked.get(recipient_id)
                    _ensure_active(sender, "Sender account")
                    if recipient is not None:
                        _ensure_active(recipient, "Recipient account")

                    balance = round2(sender.balance)
                    if balance < plan.total_debit:
                        logger.warning(
                            "Transfer refused - insufficient funds from=%s balance=%s total_debit=%s",
                            sender.account_number,
                            balance,
                            plan.total_debit,
                        )
                        if plan.fee > 0:
                            raise InsufficientBalance("Insufficient balance including processing fee")
                        raise InsufficientBalance()

                    result = self._apply_transfer(sender, recipient, plan, request, idempotency_key, fingerprint)
        except SQLAlchemyError:
            logger.exception("Transfer failed (DB error) sender_id=%s", sender_id)
            raise

        logger.info(
            "Transfer success ref=%s from=%s to=%s type=%s amount=%s fee=%s",
            result.transaction.transaction_reference,
            plan.sender.account_number,
            result.transaction.counterparty_account_number,
            plan.transfer_type,
            plan.amount,
            plan.fee,
        )
        return result

    def _apply_transfer(
        self,
        sender: Account,
        recipient: Optional[Account],
        plan: TransferPlan,
        request: TransferRequest,
        idempotency_key: Optional[str],
        fingerprint: str,
    ) -> TransferResult:
        now_ts = datetime.utcnow()
        reference = new_reference()

        sender.balance = round2(round2(sender.balance) - plan.total_debit)
        sender.updated_at = now_ts

        if recipient is not None:
            counterparty_name = recipient.name
            counterparty_number = recipient.account_number
            counterparty_bank = recipient.bank_details
            description = request.description or f"Transfer to {recipient.name}"
        else:
            counterparty_name = request.recipient_name or "External Account"
            counterparty_number = _clean(request.recipient_account) or _clean(request.recipient_phone)
            counterparty_bank = plan.recipient_bank
            description = request.description or f"Transfer to {counterparty_number}"
            description += f" (incl. processing fee {format_money(plan.fee)})"

        sender_tx = Transaction(
            transaction_id=uuid4(),
            transaction_reference=reference,
            account_id=sender.account_id,
            entry_type=EntryType.DEBIT,
            transfer_type=plan.transfer_type,
            # external debits carry the fee; internal ones are exactly the transfer amount
            amount=plan.amount if plan.is_internal else plan.total_debit,
            fee=plan.fee,
            balance_after=sender.balance,
            description=_clip(description),
            category="transfer",
            status="completed",
            counterparty_account_id=recipient.account_id if recipient is not None else None,
            counterparty_account_number=counterparty_number,
            counterparty_name=counterparty_name,
            counterparty_bank=counterparty_bank,
            idempotency_key=idempotency_key,
            request_fingerprint=fingerprint,
            created_at=now_ts,
            updated_at=now_ts,
        )
        staged: List[Transaction] = [sender_tx]

        recipient_tx = None
        if recipient is not None:
            recipient.balance = round2(round2(recipient.balance) + plan.amount)
            recipient.updated_at = now_ts
            recipient_tx = Transaction(
                transaction_id=uuid4(),
                transaction_reference=reference,
                account_id=recipient.account_id,
                entry_type=EntryType.CREDIT,
                transfer_type=TransferType.INTERNAL,
                amount=plan.amount,
                fee=Decimal("0.00"),
                balance_after=recipient.balance,
                description=_clip(f"Transfer from {sender.name}"),
                category="transfer",
                status="completed",
                counterparty_account_id=sender.account_id,
                counterparty_account_number=sender.account_number,
                counterparty_name=sender.name,
                counterparty_bank=sender.bank_details,
                created_at=now_ts,
                updated_at=now_ts,
            )
            staged.append(recipient_tx)

        self.db.add_all(staged)

        message = f"Successfully transferred {format_money(plan.amount)} to {counterparty_name}"
        if not plan.is_internal:
            message += f" ({plan.recipient_bank.get('bank_name')})"
            message += (
                f". Processing fee: {format_money(plan.fee)}"
                f" (Total debited: {format_money(plan.total_debit)})"
            )

        return TransferResult(
            transaction=sender_tx,
            transfer_type=plan.transfer_type,
            transfer_amount=plan.amount,
            processing_fee=plan.fee,
            total_debited=plan.total_debit,
            estimated_arrival=plan.estimated_arrival,
            message=message,
            counterpart_transaction=recipient_tx,
        )

    def _replayed(self, tx: Transaction, fingerprint: str) -> TransferResult:
        if tx.transfer_type is None or tx.entry_type != EntryType.DEBIT:
            raise IdempotencyConflict()
        _check_fingerprint(tx, fingerprint)
        fee = round2(tx.fee)
        total = round2(tx.amount) if tx.transfer_type == TransferType.EXTERNAL else round2(tx.amount + fee)
        amount = round2(total - fee)
        logger.info("Replaying transfer ref=%s key=%s", tx.transaction_reference, tx.idempotency_key)
        return TransferResult(
            transaction=tx,
            transfer_type=tx.transfer_type,
            transfer_amount=amount,
            processing_fee=fee,
            total_debited=total,
            estimated_arrival=ARRIVAL_INSTANT if tx.transfer_type == TransferType.INTERNAL else ARRIVAL_EXTERNAL,
            message=f"Transfer {tx.transaction_reference} already processed",
            replayed=True,
        )
