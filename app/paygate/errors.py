# app/paygate/errors.py
"""
Error taxonomy for the payment gate.

Every error carries a machine-readable ``kind``, the HTTP status the API
layer responds with, and a ``retryable`` flag telling the client whether
trying again later can succeed.

Status classes:
- 401: authentication missing
- 400: validation failures (malformed reference, failed transaction,
  mismatches, underpayment)
- 404: transaction not yet visible on the ledger (retry later)
- 409: payment reference already consumed
- 502/503/504: infrastructure (ledger, store, confirmation wait)
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base class for all payment gate errors."""

    kind = "PaymentError"
    status_code = 500
    retryable = False
    default_message = "Payment processing failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind,
            "message": self.message,
            "retryable": self.retryable,
        }


class AuthenticationMissing(PaymentError):
    kind = "AuthenticationMissing"
    status_code = 401
    default_message = "Wallet address required in X-Wallet-Address header"


class VerificationError(PaymentError):
    """Raised by PaymentVerifier when a claimed payment cannot produce a grant."""


class TransactionNotFound(VerificationError):
    """The ledger does not know the transaction yet. Transient."""

    kind = "NotFound"
    status_code = 404
    retryable = True
    default_message = "Transaction not found. Please wait for it to propagate and retry"


class InvalidTransactionReference(VerificationError):
    """The reference is not a transaction hash; retrying cannot help."""

    kind = "InvalidTransactionReference"
    status_code = 400
    default_message = "Transaction reference must be a 0x-prefixed 32-byte hex hash"


class TransactionFailed(VerificationError):
    kind = "TransactionFailed"
    status_code = 400
    default_message = "Transaction was not successful"


class SenderMismatch(VerificationError):
    kind = "SenderMismatch"
    status_code = 400
    default_message = "Transaction sender does not match subject"


class RecipientMismatch(VerificationError):
    kind = "RecipientMismatch"
    status_code = 400
    default_message = "Payment sent to wrong address"


class InsufficientPayment(VerificationError):
    kind = "InsufficientPayment"
    status_code = 400
    default_message = "Payment amount is below the required fee"


class AlreadyConsumed(VerificationError):
    kind = "AlreadyConsumed"
    status_code = 409
    default_message = "This transaction has already been used for payment"


class ConfirmationTimeout(VerificationError):
    kind = "ConfirmationTimeout"
    status_code = 504
    retryable = True
    default_message = "Timed out waiting for transaction confirmation"


class LedgerUnavailable(VerificationError):
    kind = "LedgerUnavailable"
    status_code = 502
    retryable = True
    default_message = "Ledger RPC is unavailable"


class GrantConflict(PaymentError):
    """A grant with the same transaction reference already exists in the store."""

    kind = "Conflict"
    status_code = 409
    default_message = "Grant for this transaction reference already exists"


class StoreUnavailable(PaymentError):
    kind = "StoreUnavailable"
    status_code = 503
    retryable = True
    default_message = "Grant store is unavailable"
