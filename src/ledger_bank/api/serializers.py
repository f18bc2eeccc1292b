from typing import Any, Dict, Optional

from ..db.models import Account, Transaction
from ..services.money import round2
from ..services.statistics import PeriodStats, Reconciliation, TransactionPage
from ..services.transfers import TransferPreview, TransferResult


def _money(value) -> Optional[float]:
    return float(round2(value)) if value is not None else None


def serialize_account(a: Account) -> Dict[str, Any]:
    return {
        "account_id": str(a.account_id),
        "account_number": a.account_number,
        "name": a.name,
        "email": a.email,
        "phone": a.phone,
        "balance": _money(a.balance) or 0.0,
        "status": a.status,
        "bank_details": a.bank_details,
        "created_at": a.created_at.isoformat() if getattr(a, "created_at", None) else None,
        "updated_at": a.updated_at.isoformat() if getattr(a, "updated_at", None) else None,
    }


def serialize_tx(t: Transaction) -> Dict[str, Any]:
    return {
        "transaction_id": str(t.transaction_id),
        "transaction_reference": t.transaction_reference,
        "account_id": str(t.account_id),
        "type": t.entry_type,
        "transfer_type": t.transfer_type,
        "amount": _money(t.amount),
        "fee": _money(t.fee),
        "balance_after": _money(t.balance_after),
        "description": t.description,
        "category": t.category,
        "status": t.status,
        "counterparty_account_id": str(t.counterparty_account_id) if t.counterparty_account_id else None,
        "counterparty_account_number": t.counterparty_account_number,
        "counterparty_name": t.counterparty_name,
        "counterparty_bank": t.counterparty_bank,
        "idempotency_key": t.idempotency_key,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if getattr(t, "updated_at", None) else None,
    }


def serialize_page(p: TransactionPage) -> Dict[str, Any]:
    return {
        "data": [serialize_tx(t) for t in p.items],
        "pagination": {"page": p.page, "limit": p.limit, "total": p.total, "pages": p.pages},
    }


def serialize_transfer(r: TransferResult) -> Dict[str, Any]:
    return {
        "transaction": serialize_tx(r.transaction),
        "message": r.message,
        "transfer_type": r.transfer_type,
        "transfer_amount": _money(r.transfer_amount),
        "processing_fee": _money(r.processing_fee),
        "total_debited": _money(r.total_debited),
        "estimated_arrival": r.estimated_arrival,
        "replayed": r.replayed,
    }


def serialize_preview(p: TransferPreview) -> Dict[str, Any]:
    return {
        "transfer_amount": _money(p.transfer_amount),
        "processing_fee": _money(p.processing_fee),
        "total_debit": _money(p.total_debit),
        "transfer_type": p.transfer_type,
        "recipient_found": p.recipient_found,
        "recipient_name": p.recipient_name,
        "recipient_bank": p.recipient_bank,
        "sender_balance": _money(p.sender_balance),
        "has_sufficient_balance": p.has_sufficient_balance,
        "estimated_arrival": p.estimated_arrival,
        "message": p.message,
    }


def serialize_stats(s: PeriodStats) -> Dict[str, Any]:
    return {
        "period": s.period,
        "start_date": s.start_date,
        "total_credits": _money(s.total_credits),
        "total_debits": _money(s.total_debits),
        "transaction_count": s.transaction_count,
        "categories": s.categories,
    }


def serialize_reconciliation(r: Reconciliation) -> Dict[str, Any]:
    return {
        "account_number": r.account_number,
        "balance": _money(r.balance),
        "ledger_total": _money(r.ledger_total),
        "drift": _money(r.drift),
        "consistent": r.consistent,
    }
