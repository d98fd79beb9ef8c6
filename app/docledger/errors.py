"""
Error taxonomy shared by the pipeline, the clients and the HTTP layer.

`retryable` marks errors a caller may safely retry with backoff. Ledger write
failures are never retryable: resubmitting risks anchoring the same hash twice.
"""

from __future__ import annotations


class DocLedgerError(RuntimeError):
    status_code = 500
    retryable = False
    code = "internal_error"


class FormatError(DocLedgerError, ValueError):
    """Bad input shape. Raised before any network call."""

    status_code = 400
    code = "format_error"


class ContentReadError(DocLedgerError, OSError):
    """Content could not be read in full."""

    status_code = 400
    code = "content_read_error"


class NetworkError(DocLedgerError):
    status_code = 503
    retryable = True
    code = "network_error"


class LedgerError(DocLedgerError):
    status_code = 502
    code = "ledger_error"


class InsufficientFundsError(LedgerError):
    status_code = 402
    code = "insufficient_funds"


class TransactionRevertedError(LedgerError):
    code = "transaction_reverted"


class ConfirmationTimeoutError(LedgerError):
    """
    Submitted (or possibly submitted) but not confirmed in time. The
    transaction may still be mined, so it must never be resubmitted blindly.
    `transaction_id` is the hash to watch for.
    """

    status_code = 504
    code = "confirmation_timeout"

    def __init__(self, message: str, transaction_id: str | None = None) -> None:
        super().__init__(message)
        self.transaction_id = transaction_id


class UploadError(DocLedgerError):
    status_code = 502
    code = "upload_error"


class StoreError(DocLedgerError):
    code = "store_error"
    partial = False


class NotFoundError(DocLedgerError):
    status_code = 404
    code = "not_found"


class ArchiveError(DocLedgerError):
    status_code = 400
    code = "archive_error"


class OrphanedIssuanceError(StoreError):
    """Anchored and stored, but the metadata record could not be written."""

    partial = True

    def __init__(self, message: str, issuance: object) -> None:
        super().__init__(message)
        self.issuance = issuance
