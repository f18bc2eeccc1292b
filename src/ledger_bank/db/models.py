# ledger_bank/db/models.py
from sqlalchemy import JSON, TIMESTAMP, Column, ForeignKey, Index, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB

from .session import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB, "postgresql")


class AccountStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"

    ALL = (ACTIVE, INACTIVE, SUSPENDED)


class EntryType:
    CREDIT = "credit"
    DEBIT = "debit"

    ALL = (CREDIT, DEBIT)


class TransferType:
    INTERNAL = "internal"
    EXTERNAL = "external"


TRANSACTION_CATEGORIES = (
    "deposit",
    "withdrawal",
    "transfer",
    "bill_payment",
    "shopping",
    "food",
    "transport",
    "entertainment",
    "utilities",
    "salary",
    "investment",
    "loan",
    "fee",
    "interest",
    "other",
)


class Account(Base):
    __tablename__ = "accounts"

    account_id = Column(Uuid(as_uuid=True), primary_key=True)
    account_number = Column(String(20), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    # Not unique: up to MAX_ACCOUNTS_PER_PHONE accounts may share a phone
    phone = Column(String(20), index=True)
    balance = Column(Numeric(15, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=AccountStatus.ACTIVE)
    bank_name = Column(String(255))
    ifsc_code = Column(String(20))
    branch_name = Column(String(255))
    created_at = Column(TIMESTAMP)
    updated_at = Column(TIMESTAMP)

    @property
    def bank_details(self):
        return {
            "bank_name": self.bank_name,
            "ifsc_code": self.ifsc_code,
            "branch_name": self.branch_name,
        }


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "idempotency_key", name="uq_transactions_account_idempotency"),
        Index("ix_transactions_account_created", "account_id", "created_at"),
    )

    transaction_id = Column(Uuid(as_uuid=True), primary_key=True)
    transaction_reference = Column(String(50), nullable=False, index=True)
    account_id = Column(Uuid(as_uuid=True), ForeignKey("accounts.account_id"), nullable=False)
    entry_type = Column(String(10), nullable=False)
    transfer_type = Column(String(10))
    amount = Column(Numeric(15, 2), nullable=False)
    fee = Column(Numeric(10, 2), default=0)
    balance_after = Column(Numeric(15, 2), nullable=False)
    description = Column(String(200), nullable=False)
    category = Column(String(30), nullable=False, default="other")
    status = Column(String(20), default="completed")
    # Counterparty linkage, set for transfers only
    counterparty_account_id = Column(Uuid(as_uuid=True), nullable=True)
    counterparty_account_number = Column(String(50))
    counterparty_name = Column(String(255))
    counterparty_bank = Column(JSONType)
    idempotency_key = Column(String(64))
    # sha256 of the request that first used idempotency_key
    request_fingerprint = Column(String(64))
    created_at = Column(TIMESTAMP)
    updated_at = Column(TIMESTAMP)
