"""Exception taxonomy for the ingestion pipeline.

Per-message problems (``ExtractionFailure``, individual detail fetches) are
absorbed by the sync loop. Call-level problems (``MailboxAuthError``,
``MailboxFetchError`` on listing, ``SyncInProgressError``) surface to the
caller and leave the ledger untouched.
"""

from __future__ import annotations


class InboxLedgerError(Exception):
    """Base class for all package errors."""


class ExtractionFailure(InboxLedgerError):
    """The model call failed or returned output that does not describe a
    valid transaction."""


class MailboxAuthError(InboxLedgerError):
    """The access token is missing, expired, or was rejected by the provider."""


class MailboxFetchError(InboxLedgerError):
    """Network or provider-side failure while listing or fetching messages."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(InboxLedgerError):
    """Reading or writing the local ledger files failed."""


class SyncInProgressError(InboxLedgerError):
    """Another sync or manual add is already mutating the ledger."""


class ConfigurationError(InboxLedgerError):
    """Required local configuration (client id, API key) is missing."""
