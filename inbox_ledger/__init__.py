"""Public interface for the ``inbox_ledger`` package.

Symbol re-exports only; there is no runtime logic here.
"""

from .errors import (
    ConfigurationError,
    ExtractionFailure,
    InboxLedgerError,
    MailboxAuthError,
    MailboxFetchError,
    PersistenceError,
    SyncInProgressError,
)
from .extraction import extract_transaction
from .ledger import LedgerStore, load_state, save_state
from .mailbox import AuthState, MailboxClient, decode_body_data
from .models import (
    ExpenseCategory,
    ManualAddResult,
    ProgressEvent,
    SourceMessage,
    SyncResult,
    SyncState,
    SyncStatus,
    Transaction,
    TransactionType,
)
from .stats import compute_dashboard_stats
from .sync import SyncOrchestrator

__all__ = [
    # Pipeline
    "extract_transaction",
    "MailboxClient",
    "AuthState",
    "decode_body_data",
    "SyncOrchestrator",
    "LedgerStore",
    "load_state",
    "save_state",
    "compute_dashboard_stats",
    # Models / types
    "ExpenseCategory",
    "TransactionType",
    "Transaction",
    "SourceMessage",
    "SyncState",
    "SyncStatus",
    "SyncResult",
    "ProgressEvent",
    "ManualAddResult",
    # Errors
    "InboxLedgerError",
    "ExtractionFailure",
    "MailboxAuthError",
    "MailboxFetchError",
    "PersistenceError",
    "SyncInProgressError",
    "ConfigurationError",
]
