"""Sync orchestration: mailbox -> new messages -> extraction -> ledger.

Public API:
    - :class:`SyncOrchestrator` with :meth:`~SyncOrchestrator.sync` and
      :meth:`~SyncOrchestrator.add_manual`

Both entry points mutate the same ledger and are mutually exclusive: a call
made while another is running raises :class:`SyncInProgressError` instead of
waiting.

Failure policy:
- A message whose extraction fails is skipped and NOT marked processed, so
  the next sync offers it again.
- A failed listing aborts the sync before anything is merged. When the
  provider rejected the token, the mailbox client has already cleared it.
- Extraction runs one message at a time so progress is reported as a
  monotonically increasing ``completed/total``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from .errors import (
    ConfigurationError,
    ExtractionFailure,
    MailboxAuthError,
    MailboxFetchError,
    SyncInProgressError,
)
from .extraction import extract_transaction
from .ledger import LedgerStore
from .logging_setup import get_logger
from .mailbox import MailboxClient
from .models import (
    ManualAddResult,
    ProgressEvent,
    SourceMessage,
    SyncResult,
    SyncStatus,
    Transaction,
)

type Extractor = Callable[[str], Transaction]
type ProgressCallback = Callable[[ProgressEvent], None]

_logger = get_logger("inbox_ledger.sync")


class SyncOrchestrator:
    """Single writer for a :class:`LedgerStore`.

    Parameters
    ----------
    store:
        The ledger to merge results into.
    mailbox:
        Mailbox client used by :meth:`sync`. Optional when only the manual
        path is used.
    extractor:
        Callable turning alert text into a :class:`Transaction`, raising
        :class:`ExtractionFailure` otherwise.
    """

    def __init__(
        self,
        store: LedgerStore,
        mailbox: MailboxClient | None = None,
        *,
        extractor: Extractor = extract_transaction,
    ) -> None:
        self.store = store
        self.mailbox = mailbox
        self._extract = extractor
        self._busy = threading.Lock()

    @property
    def is_busy(self) -> bool:
        return self._busy.locked()

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        if not self._busy.acquire(blocking=False):
            _logger.warning("%s:rejected reason=busy", operation)
            raise SyncInProgressError("a sync is already in progress")
        try:
            yield
        finally:
            self._busy.release()

    # ---- Manual path --------------------------------------------------------

    def add_manual(self, text: str) -> ManualAddResult:
        """Extract one transaction from pasted text and prepend it.

        ``ExtractionFailure`` propagates and the ledger is left untouched.
        Processed message ids are never modified by this path.
        """

        with self._exclusive("add_manual"):
            tx = self._extract(text)
            outcome = self.store.merge([tx])
            _logger.info("add_manual:added id=%s category=%s", tx.id, tx.category)
            return ManualAddResult(transaction=tx, persistence_warning=outcome.warning)

    # ---- Mailbox path -------------------------------------------------------

    def _extract_each(
        self, messages: list[SourceMessage], on_progress: ProgressCallback | None
    ) -> tuple[list[Transaction], list[str], list[str], list[ProgressEvent]]:
        added: list[Transaction] = []
        processed: list[str] = []
        failed: list[str] = []
        events: list[ProgressEvent] = []
        total = len(messages)
        for completed, msg in enumerate(messages, start=1):
            try:
                tx = self._extract(msg.extraction_text)
            except ExtractionFailure as e:
                _logger.warning("sync:extraction_failed message_id=%s error=%s", msg.id, e)
                failed.append(msg.id)
                ok = False
            else:
                added.append(tx)
                processed.append(msg.id)
                ok = True
            event = ProgressEvent(completed=completed, total=total, message_id=msg.id, ok=ok)
            events.append(event)
            if on_progress is not None:
                on_progress(event)
        return added, processed, failed, events

    def sync(self, on_progress: ProgressCallback | None = None) -> SyncResult:
        """Run one sync attempt.

        Returns ``AUTH_REQUESTED`` without touching the mailbox when no token
        is held (the consent flow is started instead), ``NOTHING_NEW`` when
        every candidate was already processed, and ``COMPLETED`` otherwise.
        Listing failures raise ``MailboxAuthError`` / ``MailboxFetchError``.
        """

        with self._exclusive("sync"):
            mailbox = self.mailbox
            if mailbox is None:
                raise ConfigurationError("no mailbox is configured; set a client id first")

            if not mailbox.is_authenticated:
                try:
                    mailbox.request_token()
                except ValueError as e:
                    raise ConfigurationError(str(e)) from e
                _logger.info("sync:auth_requested state=%s", mailbox.state)
                return SyncResult(status=SyncStatus.AUTH_REQUESTED)

            try:
                candidates = mailbox.list_candidate_messages()
            except MailboxAuthError as e:
                _logger.warning("sync:listing_unauthorized error=%s", e)
                raise
            except MailboxFetchError as e:
                _logger.error("sync:listing_failed status=%s error=%s", e.status_code, e)
                raise

            state = self.store.refresh()
            fresh = [m for m in candidates if not state.is_processed(m.id)]
            if not fresh:
                _logger.info("sync:nothing_new candidates=%d", len(candidates))
                return SyncResult(status=SyncStatus.NOTHING_NEW)

            _logger.info("sync:start candidates=%d new=%d", len(candidates), len(fresh))
            added, processed, failed, events = self._extract_each(fresh, on_progress)
            outcome = self.store.merge(added, processed)
            _logger.info(
                "sync:done added=%d failed=%d persisted=%s",
                outcome.added_transactions,
                len(failed),
                outcome.warning is None,
            )
            return SyncResult(
                status=SyncStatus.COMPLETED,
                added_count=outcome.added_transactions,
                events=tuple(events),
                failed_message_ids=tuple(failed),
                persistence_warning=outcome.warning,
            )
