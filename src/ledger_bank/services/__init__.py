from .errors import LedgerError
from .fees import compute_fee, total_debit
from .recipients import Ambiguous, NotFound, Resolved, resolve_recipient
from .transfers import TransferRequest, TransferService

__all__ = [
    "LedgerError",
    "compute_fee",
    "total_debit",
    "Ambiguous",
    "NotFound",
    "Resolved",
    "resolve_recipient",
    "TransferRequest",
    "TransferService",
]
