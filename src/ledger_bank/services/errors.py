"""
Business-rule failures raised by the ledger services.

Every error is final for the request that raised it: nothing here is
transient, so callers must resubmit with corrected input rather than retry.
The API layer renders them as ``{"error": message, "code": code}``.
"""

from typing import Any, Dict, List, Optional


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class InvalidAmount(LedgerError):
    code = "invalid_amount"
    default_message = "Amount must be a number greater than 0"


class InvalidCategory(LedgerError):
    code = "invalid_category"
    default_message = "Unknown transaction category"


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"
    default_message = "Insufficient balance"


class CannotTransferToSelf(LedgerError):
    code = "cannot_transfer_to_self"
    default_message = "Cannot transfer to your own account"


class MissingExternalBankDetails(LedgerError):
    code = "missing_external_bank_details"
    default_message = "Recipient bank details are required for external transfers"


class AccountNotActive(LedgerError):
    code = "account_not_active"
    default_message = "Account is not active"


class RecipientAmbiguous(LedgerError):
    """
    Raised when a phone number matches several accounts.
    Carries the candidates so the caller can retry with an account number.
    """

    code = "recipient_ambiguous"
    status_code = 300
    default_message = "Multiple accounts found"

    def __init__(self, candidates: List[Dict[str, Any]], message: Optional[str] = None):
        super().__init__(message)
        self.candidates = candidates

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "code": self.code,
            "message": "Multiple accounts found for this phone number. Please specify account number instead.",
            "accounts": self.candidates,
            "needs_account_selection": True,
        }


class NotAuthorized(LedgerError):
    code = "not_authorized"
    status_code = 403
    default_message = "Not authorized to access this transaction"


class AccountNotFound(LedgerError):
    code = "account_not_found"
    status_code = 404
    default_message = "Account not found"


class TransactionNotFound(LedgerError):
    code = "transaction_not_found"
    status_code = 404
    default_message = "Transaction not found"


class DuplicateAccount(LedgerError):
    code = "duplicate_account"
    status_code = 409
    default_message = "An account with this email already exists"


class IdempotencyConflict(LedgerError):
    code = "idempotency_conflict"
    status_code = 409
    default_message = "Idempotency key was already used for a different operation"


class PhoneAccountLimit(LedgerError):
    code = "phone_account_limit"
    status_code = 409
    default_message = "Maximum number of accounts reached for this phone number"


class InvalidIdempotencyKey(LedgerError):
    code = "invalid_idempotency_key"
    default_message = "Idempotency keys starting with 'ledger:' are reserved"
