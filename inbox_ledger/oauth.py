"""One-shot OAuth consent for Gmail read access.

:func:`start_consent` runs the provider's interactive consent flow on a
background worker and returns a ``Future`` resolving to the access token.
Completion fires exactly one of ``on_token`` / ``on_error``. The flow is
bounded by ``timeout`` seconds; a consent that never completes resolves the
future with an error instead of waiting forever.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from google_auth_oauthlib.flow import InstalledAppFlow

from .logging_setup import get_logger

GMAIL_SCOPES: tuple[str, ...] = ("https://www.googleapis.com/auth/gmail.readonly",)

_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
_TOKEN_URI = "https://oauth2.googleapis.com/token"

type ConsentRunner = Callable[[str, str | None, float], str]
"""``(client_id, client_secret, timeout_seconds) -> access_token``."""

_logger = get_logger("inbox_ledger.oauth")


def build_client_config(client_id: str, client_secret: str | None = None) -> dict[str, dict]:
    installed: dict[str, object] = {
        "client_id": client_id.strip(),
        "auth_uri": _AUTH_URI,
        "token_uri": _TOKEN_URI,
        "redirect_uris": ["http://localhost"],
    }
    if client_secret:
        installed["client_secret"] = client_secret.strip()
    return {"installed": installed}


def run_installed_app_flow(client_id: str, client_secret: str | None, timeout: float) -> str:
    """Run the local-server consent flow and return the granted access token."""

    flow = InstalledAppFlow.from_client_config(
        build_client_config(client_id, client_secret), scopes=list(GMAIL_SCOPES)
    )
    creds = flow.run_local_server(
        port=0,
        open_browser=True,
        timeout_seconds=int(timeout),
        authorization_prompt_message="Open this URL to link your mailbox: {url}",
        success_message="Mailbox linked. You can close this window.",
    )
    token = getattr(creds, "token", None)
    if not token:
        raise RuntimeError("consent flow completed without an access token")
    return token


def start_consent(
    client_id: str,
    *,
    on_token: Callable[[str], None],
    on_error: Callable[[BaseException], None],
    client_secret: str | None = None,
    timeout: float = 120.0,
    runner: ConsentRunner = run_installed_app_flow,
) -> Future[str]:
    """Start the consent flow in the background and return its future."""

    if not client_id or not client_id.strip():
        raise ValueError("client_id is required to start the consent flow")

    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="inbox-ledger-consent")
    future: Future[str] = executor.submit(runner, client_id, client_secret, timeout)

    def _done(fut: Future[str]) -> None:
        exc = fut.exception()
        if exc is not None:
            _logger.warning("oauth:consent_failed error=%s", exc.__class__.__name__)
            on_error(exc)
            return
        _logger.info("oauth:consent_granted")
        on_token(fut.result())

    future.add_done_callback(_done)
    # The worker thread finishes on its own once the flow returns.
    executor.shutdown(wait=False)
    return future
