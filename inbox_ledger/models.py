"""Data models for ``inbox_ledger``.

Validated records (``Transaction``, ``SyncState``) are Pydantic models so that
nothing outside the closed category set or with a non-finite amount can be
constructed, loaded from disk, or accepted from the model. A signed amount is
stored as its absolute value. Plain value objects passed between pipeline
stages are frozen dataclasses.
"""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import PersistenceError

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ExpenseCategory(StrEnum):
    FOOD = "Food & Dining"
    SHOPPING = "Shopping"
    TRANSPORT = "Transport"
    BILLS = "Utilities & Bills"
    ENTERTAINMENT = "Entertainment"
    HEALTH = "Health"
    TRAVEL = "Travel"
    OTHER = "Other"
    INCOME = "Income"


class TransactionType(StrEnum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


ALLOWED_CATEGORIES: tuple[str, ...] = tuple(c.value for c in ExpenseCategory)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class ExtractedTransaction(BaseModel):
    """The fields a model must produce for one alert.

    Extra keys in the model output are ignored rather than rejected. ``merchant``
    may be empty; alerts such as cash withdrawals name no counterparty.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    date: dt.date
    amount: float = Field(ge=0, allow_inf_nan=False)
    merchant: str
    description: str
    category: ExpenseCategory
    type: TransactionType

    @field_validator("amount", mode="before")
    @classmethod
    def _unsigned_amount(cls, v: object) -> object:
        # Direction lives in ``type``; a signed debit such as -450.0 means 450.0.
        if isinstance(v, int | float) and not isinstance(v, bool):
            return abs(v)
        return v


def new_transaction_id() -> str:
    return uuid.uuid4().hex


class Transaction(ExtractedTransaction):
    """A single financial event extracted from one alert message."""

    id: str = Field(default_factory=new_transaction_id, min_length=1)

    @classmethod
    def from_extracted(cls, extracted: ExtractedTransaction) -> Transaction:
        """Stamp a fresh identifier onto a validated extraction."""

        return cls(id=new_transaction_id(), **extracted.model_dump())


# ---------------------------------------------------------------------------
# Mailbox messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SourceMessage:
    """An alert message fetched from the mailbox.

    ``id`` is the provider-assigned identifier and the deduplication key.
    ``body`` is empty when no part of the payload could be decoded.
    """

    id: str
    snippet: str
    body: str = ""

    @property
    def extraction_text(self) -> str:
        return self.body if self.body.strip() else self.snippet


# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------


class SyncState(BaseModel):
    """Immutable snapshot of the ledger.

    ``transactions`` is newest-first by insertion. ``processed_message_ids``
    holds the ids of messages that produced a transaction, newest-first.
    """

    model_config = ConfigDict(frozen=True)

    transactions: tuple[Transaction, ...] = ()
    processed_message_ids: tuple[str, ...] = ()

    def is_processed(self, message_id: str) -> bool:
        return message_id in self.processed_message_ids

    def merged(
        self, new_transactions: tuple[Transaction, ...], new_ids: tuple[str, ...]
    ) -> SyncState:
        """Return a new snapshot with the additions prepended.

        Input order of ``new_transactions`` is kept. Transactions whose ``id``
        is already present and message ids already present are not
        duplicated, so re-applying a batch is a no-op.
        """

        known_tx = {t.id for t in self.transactions}
        fresh_txs: list[Transaction] = []
        for tx in new_transactions:
            if tx.id in known_tx:
                continue
            known_tx.add(tx.id)
            fresh_txs.append(tx)

        seen = set(self.processed_message_ids)
        fresh_ids: list[str] = []
        for mid in new_ids:
            if mid in seen:
                continue
            seen.add(mid)
            fresh_ids.append(mid)
        return SyncState(
            transactions=tuple(fresh_txs) + self.transactions,
            processed_message_ids=tuple(fresh_ids) + self.processed_message_ids,
        )


@dataclass(frozen=True, slots=True)
class MergeOutcome:
    """Result of a ledger mutation.

    ``warning`` is set when the new state could not be written to disk; the
    in-memory snapshot still reflects the merge.
    """

    state: SyncState
    added_transactions: int
    added_ids: int
    warning: PersistenceError | None = None


# ---------------------------------------------------------------------------
# Sync reporting
# ---------------------------------------------------------------------------


class SyncStatus(StrEnum):
    AUTH_REQUESTED = "auth_requested"
    NOTHING_NEW = "nothing_new"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Progress after one extraction step of a sync."""

    completed: int
    total: int
    message_id: str
    ok: bool

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return round(self.completed / self.total * 100)


@dataclass(frozen=True, slots=True)
class SyncResult:
    status: SyncStatus
    added_count: int = 0
    events: tuple[ProgressEvent, ...] = ()
    failed_message_ids: tuple[str, ...] = ()
    persistence_warning: PersistenceError | None = None


@dataclass(frozen=True, slots=True)
class ManualAddResult:
    transaction: Transaction
    persistence_warning: PersistenceError | None = None


# ---------------------------------------------------------------------------
# Dashboard statistics
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DashboardStats:
    total_spent: float
    top_category: ExpenseCategory
    transaction_count: int
    avg_transaction: float


@dataclass(frozen=True, slots=True)
class DailySpend:
    day: dt.date
    amount: float = 0.0


@dataclass(frozen=True, slots=True)
class CategoryTotal:
    category: ExpenseCategory
    amount: float
    share: float = 0.0
