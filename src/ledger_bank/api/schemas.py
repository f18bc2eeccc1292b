from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class BankDetails(BaseModel):
    bank_name: Optional[str] = Field(None, examples=["State Bank of India"])
    ifsc_code: Optional[str] = Field(None, examples=["SBIN0001234"])
    branch_name: Optional[str] = None


class AccountCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255, examples=["jane.smith@email.com"])
    phone: Optional[str] = Field(None, max_length=20, examples=["9990002222"])
    initial_deposit: Decimal = Field(Decimal("0.00"), ge=0)
    bank: Optional[BankDetails] = None


class AccountOut(BaseModel):
    account_id: UUID
    account_number: str
    name: str
    email: str
    phone: Optional[str] = None
    balance: float
    status: str
    bank_details: BankDetails
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AccountCreated(BaseModel):
    account: AccountOut
    access_token: str
    token_type: str = "bearer"


class TransactionCreate(BaseModel):
    type: Literal["credit", "debit"]
    # validated by the ledger so malformed amounts report invalid_amount
    amount: Any = Field(..., examples=[100.00])
    description: Optional[str] = Field(None, max_length=200)
    category: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=64)


class TransactionUpdate(BaseModel):
    description: Optional[str] = Field(None, max_length=200)
    category: Optional[str] = None


class TransactionOut(BaseModel):
    transaction_id: UUID
    transaction_reference: str
    account_id: UUID
    type: str
    transfer_type: Optional[str] = None
    amount: float
    fee: Optional[float] = None
    balance_after: float
    description: str
    category: str
    status: str
    counterparty_account_id: Optional[UUID] = None
    counterparty_account_number: Optional[str] = None
    counterparty_name: Optional[str] = None
    counterparty_bank: Optional[Dict[str, Any]] = None
    idempotency_key: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class PostingOut(BaseModel):
    transaction: TransactionOut
    replayed: bool = False


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class TransactionPageOut(BaseModel):
    data: List[TransactionOut]
    pagination: Pagination


class TransferIn(BaseModel):
    recipient_account: Optional[str] = Field(None, examples=["ACC000002"])
    recipient_phone: Optional[str] = Field(None, examples=["9990002222"])
    recipient_bank: Optional[BankDetails] = None
    recipient_name: Optional[str] = None
    amount: Any = Field(..., examples=[250.00])
    description: Optional[str] = Field(None, max_length=200)
    idempotency_key: Optional[str] = Field(None, max_length=64)


class TransferOut(BaseModel):
    transaction: TransactionOut
    message: str
    transfer_type: str
    transfer_amount: float
    processing_fee: float
    total_debited: float
    estimated_arrival: str
    replayed: bool = False


class TransferPreviewOut(BaseModel):
    transfer_amount: float
    processing_fee: float
    total_debit: float
    transfer_type: str
    recipient_found: bool
    recipient_name: str
    recipient_bank: Optional[Dict[str, Any]] = None
    sender_balance: float
    has_sufficient_balance: bool
    estimated_arrival: str
    message: str


class StatsOut(BaseModel):
    period: str
    start_date: datetime
    total_credits: float
    total_debits: float
    transaction_count: int
    categories: List[str]


class ReconciliationOut(BaseModel):
    account_number: str
    balance: float
    ledger_total: float
    drift: float
    consistent: bool


class SeedOut(BaseModel):
    seeded_accounts_created: int
