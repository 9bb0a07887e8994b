"""Ledger persistence and the ledger store shared by CLI processes.

On-disk layout (relative to the data directory):

- ``transactions.json``: JSON array of transactions, newest-first.
- ``processed_ids.json``: JSON array of processed mailbox message ids.

Both blobs are rewritten in full on every mutation. Writes target ``.tmp``
first and are then moved into place with ``os.replace``. Mutations hold an
exclusive ``flock`` on ``.lock`` in the same directory. Missing blobs mean an
empty ledger. A blob that cannot be parsed is moved aside to ``*.corrupt`` and
treated as empty, so the next write does not silently destroy it.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import os
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .errors import PersistenceError
from .logging_setup import get_logger
from .models import MergeOutcome, SyncState, Transaction

TRANSACTIONS_FILE = "transactions.json"
PROCESSED_IDS_FILE = "processed_ids.json"
LOCK_FILE = ".lock"

_logger = get_logger("inbox_ledger.ledger")


# ----------------------------------------------------------------------------
# Pure load/save
# ----------------------------------------------------------------------------


def _read_json_array(path: Path) -> list[Any]:
    """Return the JSON array stored at ``path`` (empty when absent/unreadable)."""

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError) as e:
        _logger.warning(
            "ledger:read_failed path=%s error=%s", os.fspath(path), e.__class__.__name__
        )
        return []

    try:
        decoded = json.loads(text) if text.strip() else []
    except json.JSONDecodeError:
        decoded = None
    if not isinstance(decoded, list):
        aside = path.with_suffix(path.suffix + ".corrupt")
        _logger.warning(
            "ledger:blob_invalid path=%s moved_to=%s", os.fspath(path), os.fspath(aside)
        )
        with contextlib.suppress(OSError):
            os.replace(path, aside)
        return []
    return decoded


def load_state(storage_dir: Path) -> SyncState:
    """Load the ledger snapshot from ``storage_dir``.

    Read failures never raise: the affected blob is treated as empty.
    Individual transaction records that fail validation are dropped with a
    warning.
    """

    storage_dir = Path(storage_dir)
    transactions: list[Transaction] = []
    for pos, raw in enumerate(_read_json_array(storage_dir / TRANSACTIONS_FILE)):
        try:
            transactions.append(Transaction.model_validate(raw))
        except ValidationError as e:
            _logger.warning(
                "ledger:record_invalid position=%d errors=%d", pos, e.error_count()
            )

    ids: list[str] = []
    seen: set[str] = set()
    for raw in _read_json_array(storage_dir / PROCESSED_IDS_FILE):
        if isinstance(raw, str) and raw and raw not in seen:
            seen.add(raw)
            ids.append(raw)

    return SyncState(transactions=tuple(transactions), processed_message_ids=tuple(ids))


def _write_json(path: Path, payload: Any) -> None:
    path.write_text(
        json.dumps(payload, ensure_ascii=False, separators=(",", ":")), encoding="utf-8"
    )


def save_state(storage_dir: Path, state: SyncState) -> None:
    """Write both ledger blobs. Raises ``PersistenceError`` on failure.

    Both blobs are staged as ``.tmp`` files before either is moved into place,
    so a failed write leaves the previous pair intact. ``transactions.json``
    is replaced first. If the second rename fails the processed ids lag
    behind and the next sync extracts those messages again, but no message
    is ever marked processed without its transaction on disk.
    """

    storage_dir = Path(storage_dir)
    targets = (
        (
            storage_dir / TRANSACTIONS_FILE,
            [tx.model_dump(mode="json") for tx in state.transactions],
        ),
        (storage_dir / PROCESSED_IDS_FILE, list(state.processed_message_ids)),
    )
    staged: list[tuple[Path, Path]] = []
    try:
        storage_dir.mkdir(parents=True, exist_ok=True)
        for path, payload in targets:
            tmp = path.with_suffix(path.suffix + ".tmp")
            staged.append((tmp, path))
            _write_json(tmp, payload)
        for tmp, path in staged:
            os.replace(tmp, path)
    except OSError as e:
        for tmp, _path in staged:
            with contextlib.suppress(OSError):
                tmp.unlink()
        raise PersistenceError(
            f"could not save ledger to {os.fspath(storage_dir)}: {e.strerror or e}"
        ) from e


# ----------------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------------


@contextlib.contextmanager
def _directory_lock(storage_dir: Path) -> Iterator[None]:
    """Hold an exclusive ``flock`` on ``<storage_dir>/.lock``.

    Blocks until other processes release it. Raises ``PersistenceError`` when
    the lock file cannot be opened.
    """

    handle = None
    try:
        storage_dir.mkdir(parents=True, exist_ok=True)
        handle = (storage_dir / LOCK_FILE).open("a")
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
    except OSError as e:
        if handle is not None:
            handle.close()
        raise PersistenceError(
            f"could not lock ledger at {os.fspath(storage_dir)}: {e.strerror or e}"
        ) from e
    with handle:
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class LedgerStore:
    """Owner of the current ledger snapshot.

    Every process (each CLI command) builds its own store over the same data
    directory. ``merge`` and ``reset`` therefore take an exclusive file lock,
    re-read the blobs, apply their change on top of what is on disk and write
    the result, all under the lock. Changes from other processes are never
    overwritten.

    A failed write is returned as a warning in the :class:`MergeOutcome`. The
    in-memory snapshot keeps the change and the batch is re-applied on top of
    the disk state by the next successful ``merge``.
    """

    def __init__(self, storage_dir: Path, *, state: SyncState | None = None) -> None:
        self.storage_dir = Path(storage_dir)
        self._state = state if state is not None else load_state(self.storage_dir)
        self._unsaved: list[tuple[tuple[Transaction, ...], tuple[str, ...]]] = []

    @property
    def state(self) -> SyncState:
        return self._state

    def _disk_state(self) -> SyncState:
        """Current blobs plus any batches this store failed to save."""

        state = load_state(self.storage_dir)
        for txs, ids in self._unsaved:
            state = state.merged(txs, ids)
        return state

    def refresh(self) -> SyncState:
        """Reload the snapshot so writes by other processes become visible."""

        try:
            with _directory_lock(self.storage_dir):
                self._state = self._disk_state()
        except PersistenceError as e:
            _logger.warning("ledger:refresh_failed error=%s", e)
        return self._state

    def merge(
        self, new_transactions: Iterable[Transaction], new_ids: Iterable[str] = ()
    ) -> MergeOutcome:
        """Prepend ``new_transactions`` and ``new_ids`` and persist.

        Nothing is written when there is nothing to add.
        """

        txs = tuple(new_transactions)
        ids = tuple(new_ids)
        try:
            with _directory_lock(self.storage_dir):
                return self._apply(self._disk_state(), txs, ids)
        except PersistenceError as e:
            _logger.error("ledger:lock_failed error=%s", e)
            return self._apply(self._state, txs, ids, lock_error=e)

    def _apply(
        self,
        before: SyncState,
        txs: tuple[Transaction, ...],
        ids: tuple[str, ...],
        *,
        lock_error: PersistenceError | None = None,
    ) -> MergeOutcome:
        after = before.merged(txs, ids)
        added_txs = len(after.transactions) - len(before.transactions)
        added_ids = len(after.processed_message_ids) - len(before.processed_message_ids)
        if added_txs == 0 and added_ids == 0:
            self._state = before
            return MergeOutcome(state=before, added_transactions=0, added_ids=0)

        self._state = after
        warning = lock_error
        if warning is None:
            try:
                save_state(self.storage_dir, after)
            except PersistenceError as e:
                _logger.error("ledger:save_failed error=%s", e)
                warning = e
        if warning is None:
            self._unsaved.clear()
        else:
            self._unsaved.append((txs, ids))
        _logger.info(
            "ledger:merged added_transactions=%d added_ids=%d total=%d persisted=%s",
            added_txs,
            added_ids,
            len(after.transactions),
            warning is None,
        )
        return MergeOutcome(
            state=after, added_transactions=added_txs, added_ids=added_ids, warning=warning
        )

    def reset(self) -> MergeOutcome:
        """Drop all transactions and processed ids."""

        self._unsaved.clear()
        self._state = SyncState()
        warning: PersistenceError | None = None
        try:
            with _directory_lock(self.storage_dir):
                save_state(self.storage_dir, self._state)
        except PersistenceError as e:
            _logger.error("ledger:reset_failed error=%s", e)
            warning = e
        _logger.info("ledger:reset persisted=%s", warning is None)
        return MergeOutcome(state=self._state, added_transactions=0, added_ids=0, warning=warning)
