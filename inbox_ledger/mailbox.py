"""Gmail mailbox client: consent state, candidate listing, body decoding.

Authentication state moves ``UNAUTHENTICATED -> AWAITING_TOKEN ->
AUTHENTICATED`` through :meth:`MailboxClient.request_token`, and back to
``UNAUTHENTICATED`` whenever the provider rejects the token.

Listing is one ``messages.list`` call followed by one ``messages.get`` per id,
issued concurrently. A failing detail fetch drops that message only; a
rejected token fails the whole listing.
"""

from __future__ import annotations

import base64
import json
import os
import threading
from collections.abc import Mapping
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import StrEnum
from pathlib import Path
from typing import Any

import httpx

from . import oauth
from .errors import MailboxAuthError, MailboxFetchError
from .fanout import SKIP, fan_out
from .logging_setup import get_logger
from .models import SourceMessage

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
DEFAULT_QUERY = "from:hdfcbank.net InstaAlert"
DEFAULT_MAX_RESULTS = 15
# Gmail caps maxResults for messages.list at 500.
_MAX_RESULTS_CAP = 500
_RATE_LIMIT_REASONS = frozenset({"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded"})

_logger = get_logger("inbox_ledger.mailbox")


class AuthState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_TOKEN = "awaiting_token"
    AUTHENTICATED = "authenticated"


# ---------------------------------------------------------------------------
# Body decoding
# ---------------------------------------------------------------------------


def decode_body_data(data: str) -> str:
    """Decode a Gmail body ``data`` field (URL-safe base64, padding optional).

    Raises ``ValueError`` (``binascii.Error`` or ``UnicodeDecodeError``) when
    the data is not valid base64 or not UTF-8.
    """

    b64 = data.strip().replace("-", "+").replace("_", "/")
    b64 += "=" * (-len(b64) % 4)
    return base64.b64decode(b64, validate=True).decode("utf-8")


def find_body(payload: Mapping[str, Any] | None) -> str:
    """Return the first decodable body in ``payload``, searching depth-first.

    Returns an empty string when no part carries usable body data. Malformed
    nodes (a non-list ``parts``, a non-object part) are skipped.
    """

    if not isinstance(payload, Mapping):
        return ""
    body = payload.get("body")
    data = body.get("data") if isinstance(body, Mapping) else None
    if isinstance(data, str) and data:
        try:
            text = decode_body_data(data)
        except ValueError:
            _logger.debug(
                "mailbox:body_decode_failed mime_type=%s", payload.get("mimeType"), exc_info=True
            )
            text = ""
        if text.strip():
            return text
    parts = payload.get("parts")
    if not isinstance(parts, list):
        return ""
    for part in parts:
        text = find_body(part)
        if text:
            return text
    return ""


def message_from_detail(message_id: str, detail: Mapping[str, Any]) -> SourceMessage:
    snippet = detail.get("snippet")
    return SourceMessage(
        id=message_id,
        snippet=snippet if isinstance(snippet, str) else "",
        body=find_body(detail.get("payload")),
    )


# ---------------------------------------------------------------------------
# Token persistence
# ---------------------------------------------------------------------------


def read_token(path: Path) -> str | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError):
        _logger.warning("mailbox:token_read_failed path=%s", os.fspath(path), exc_info=True)
        return None
    token = data.get("access_token") if isinstance(data, dict) else None
    return token if isinstance(token, str) and token else None


def write_token(path: Path, token: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps({"access_token": token}), encoding="utf-8")
    os.replace(tmp, path)


def delete_token(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


def _error_reasons(resp: httpx.Response) -> tuple[str, str]:
    """Return ``(message, reason)`` from a Google API error body, best effort."""

    try:
        err = resp.json().get("error") or {}
    except (ValueError, AttributeError):
        return f"Gmail API error: {resp.status_code}", ""
    if not isinstance(err, dict):
        return f"Gmail API error: {resp.status_code}", ""
    message = err.get("message") or f"Gmail API error: {resp.status_code}"
    reason = ""
    errors = err.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        reason = str(errors[0].get("reason") or "")
    return str(message), reason


class MailboxClient:
    """Gmail client bound to one OAuth client id.

    Parameters
    ----------
    client_id:
        OAuth client identifier used to start the consent flow.
    http:
        Optional ``httpx.Client``; one is created (and owned) when omitted.
    token:
        Pre-existing access token. When omitted and ``token_path`` exists,
        the stored token is used.
    token_path:
        Where to persist the access token between runs. The file is removed
        when the token is cleared.
    """

    def __init__(
        self,
        client_id: str,
        *,
        client_secret: str | None = None,
        http: httpx.Client | None = None,
        token: str | None = None,
        token_path: Path | None = None,
        query: str = DEFAULT_QUERY,
        max_results: int = DEFAULT_MAX_RESULTS,
        fetch_concurrency: int = 4,
        auth_timeout: float = 120.0,
        consent_runner: oauth.ConsentRunner = oauth.run_installed_app_flow,
    ) -> None:
        self.client_id = client_id
        self.query = query
        self.max_results = max_results
        self.fetch_concurrency = fetch_concurrency
        self.auth_timeout = auth_timeout
        self._client_secret = client_secret
        self._consent_runner = consent_runner
        self._token_path = token_path
        self._owns_http = http is None
        self._http = http if http is not None else httpx.Client(timeout=20.0)
        self._lock = threading.RLock()
        self._pending: Future[str] | None = None
        self._last_auth_error: BaseException | None = None

        if token is None and token_path is not None:
            token = read_token(token_path)
        self._token: str | None = token
        self._state = AuthState.AUTHENTICATED if token else AuthState.UNAUTHENTICATED

    # ---- Authentication -----------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def is_authenticated(self) -> bool:
        return self._state is AuthState.AUTHENTICATED

    @property
    def last_auth_error(self) -> BaseException | None:
        return self._last_auth_error

    def request_token(self) -> Future[str]:
        """Start the consent flow, or return the one already in progress."""

        with self._lock:
            if self._pending is not None and not self._pending.done():
                return self._pending
            self._state = AuthState.AWAITING_TOKEN
            self._last_auth_error = None
            try:
                self._pending = oauth.start_consent(
                    self.client_id,
                    client_secret=self._client_secret,
                    timeout=self.auth_timeout,
                    runner=self._consent_runner,
                    on_token=self._accept_token,
                    on_error=self._consent_failed,
                )
            except ValueError:
                self._state = AuthState.UNAUTHENTICATED
                raise
            return self._pending

    def wait_for_token(self, timeout: float | None = None) -> str:
        """Block until the pending consent completes and return the token."""

        pending = self._pending
        if pending is None:
            if self._token:
                return self._token
            raise MailboxAuthError("no consent flow in progress; request a token first")
        try:
            token = pending.result(timeout=timeout if timeout is not None else self.auth_timeout)
        except FutureTimeoutError as e:
            raise MailboxAuthError("timed out waiting for mailbox consent") from e
        except Exception as e:
            self._consent_failed(e)
            raise MailboxAuthError(f"mailbox consent failed: {e}") from e
        # Done-callbacks may still be running; both handlers are idempotent.
        self._accept_token(token)
        return token

    def _accept_token(self, token: str) -> None:
        with self._lock:
            if self._token == token and self._state is AuthState.AUTHENTICATED:
                return
            self._token = token
            self._state = AuthState.AUTHENTICATED
        if self._token_path is not None:
            try:
                write_token(self._token_path, token)
            except OSError:
                _logger.warning(
                    "mailbox:token_write_failed path=%s", os.fspath(self._token_path), exc_info=True
                )

    def _consent_failed(self, exc: BaseException) -> None:
        with self._lock:
            self._last_auth_error = exc
            self._token = None
            self._state = AuthState.UNAUTHENTICATED

    def clear_token(self) -> None:
        """Forget the access token so the next sync re-authenticates."""

        with self._lock:
            self._token = None
            self._pending = None
            self._state = AuthState.UNAUTHENTICATED
        if self._token_path is not None:
            delete_token(self._token_path)

    # ---- Listing ------------------------------------------------------------

    def _get_json(self, path: str, *, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        token = self._token
        if not token:
            raise MailboxAuthError("not authenticated")
        try:
            resp = self._http.get(
                f"{GMAIL_API_BASE}/{path}",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise MailboxFetchError(f"Gmail request failed: {e}") from e

        if resp.status_code in (401, 403):
            message, reason = _error_reasons(resp)
            if resp.status_code == 401 or reason not in _RATE_LIMIT_REASONS:
                self.clear_token()
                raise MailboxAuthError(message)
            raise MailboxFetchError(message, status_code=resp.status_code)
        if not resp.is_success:
            message, _reason = _error_reasons(resp)
            raise MailboxFetchError(message, status_code=resp.status_code)
        try:
            decoded = resp.json()
        except ValueError as e:
            raise MailboxFetchError("Gmail API returned invalid JSON") from e
        if not isinstance(decoded, dict):
            raise MailboxFetchError("Gmail API returned an unexpected response shape")
        return decoded

    def _fetch_detail(self, message_id: str) -> SourceMessage | object:
        try:
            detail = self._get_json(f"messages/{message_id}", params={"format": "full"})
        except MailboxFetchError as e:
            _logger.warning(
                "mailbox:detail_failed message_id=%s status=%s error=%s",
                message_id,
                e.status_code,
                e,
            )
            return SKIP
        return message_from_detail(message_id, detail)

    def list_candidate_messages(
        self, query: str | None = None, limit: int | None = None
    ) -> list[SourceMessage]:
        """List alert messages matching ``query`` and fetch their bodies.

        Raises ``MailboxAuthError`` when the token is missing or rejected and
        ``MailboxFetchError`` when the listing call itself fails.
        """

        cap = max(1, min(limit if limit is not None else self.max_results, _MAX_RESULTS_CAP))
        listing = self._get_json(
            "messages", params={"q": query or self.query, "maxResults": cap}
        )
        refs = listing.get("messages") or []
        ids: list[str] = []
        for ref in refs:
            mid = ref.get("id") if isinstance(ref, Mapping) else None
            if isinstance(mid, str) and mid and mid not in ids:
                ids.append(mid)
        if not ids:
            _logger.info("mailbox:listing_empty query=%r", query or self.query)
            return []

        fetched: list[SourceMessage] = fan_out(
            ids, self._fetch_detail, concurrency=max(1, self.fetch_concurrency)
        )
        # Completion order is arbitrary; hand back the provider's listing order.
        position = {mid: i for i, mid in enumerate(ids)}
        messages = sorted(fetched, key=lambda m: position[m.id])
        _logger.info(
            "mailbox:listing_done listed=%d fetched=%d dropped=%d",
            len(ids),
            len(messages),
            len(ids) - len(messages),
        )
        return messages

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> MailboxClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
