"""Typer console interface for ``inbox_ledger``.

Environment variables are loaded from a local ``.env`` (without overriding the
process environment) before any command runs, and logging is configured once
in the root callback. Business logic lives in :mod:`inbox_ledger.sync`,
:mod:`inbox_ledger.ledger` and :mod:`inbox_ledger.stats`.
"""

from __future__ import annotations

import functools
import os
import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv

from .errors import (
    ConfigurationError,
    ExtractionFailure,
    MailboxAuthError,
    MailboxFetchError,
    PersistenceError,
    SyncInProgressError,
)
from .ledger import LedgerStore
from .logging_setup import configure_logging
from .mailbox import MailboxClient
from .models import ProgressEvent, SyncStatus, Transaction
from .settings import Settings, clear_local_config, load_settings, save_client_id
from .stats import category_breakdown, compute_dashboard_stats, daily_spend
from .sync import Extractor, SyncOrchestrator

_RELINK_HINT = "Mailbox access was rejected or has expired. Run `inbox-ledger link` to re-link."


# ---- Wiring (module-level so tests can substitute collaborators) -------------


def _build_extractor(settings: Settings) -> Extractor:
    from openai import OpenAI

    from .extraction import extract_transaction

    return functools.partial(extract_transaction, client=OpenAI(), model=settings.model)


def _build_mailbox(settings: Settings) -> MailboxClient:
    if not settings.client_id:
        raise ConfigurationError(
            "No mailbox client id configured. Run `inbox-ledger set-client-id <ID>` "
            "or set GMAIL_CLIENT_ID."
        )
    return MailboxClient(
        settings.client_id,
        client_secret=settings.client_secret,
        token_path=settings.token_path,
        query=settings.query,
        max_results=settings.max_results,
        auth_timeout=settings.auth_timeout,
    )


def _require_openai_key() -> None:
    if not os.getenv("OPENAI_API_KEY"):
        raise ConfigurationError("OPENAI_API_KEY is not set in the environment.")


def _fail(message: str) -> typer.Exit:
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(1)


def _warn_persistence(warning: PersistenceError | None) -> None:
    if warning is not None:
        typer.echo(
            f"Warning: changes are kept in memory but could not be saved: {warning}", err=True
        )


def _format_row(t: Transaction) -> str:
    sign = "-" if t.type == "DEBIT" else "+"
    return (
        f"{t.date.isoformat()}  {sign}{t.amount:>11,.2f}  {t.category.value:<18}  "
        f"{t.merchant}  ({t.description})"
    )


# ---- Typer app ---------------------------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Turn bank alert emails into a local transaction ledger using OpenAI "
        "(Responses API). Loads OPENAI_API_KEY and GMAIL_CLIENT_ID from a local .env."
    ),
)


@app.command("add")
def add_cmd(
    text: Annotated[
        str | None, typer.Argument(help="Alert text; read from stdin when omitted.")
    ] = None,
) -> None:
    """Extract one transaction from pasted alert text."""

    settings = load_settings()
    raw = text if text is not None else sys.stdin.read()
    if not raw.strip():
        raise _fail("no alert text provided.")
    try:
        _require_openai_key()
        orchestrator = SyncOrchestrator(
            LedgerStore(settings.data_dir), extractor=_build_extractor(settings)
        )
        result = orchestrator.add_manual(raw)
    except ConfigurationError as e:
        raise _fail(str(e)) from e
    except ExtractionFailure as e:
        raise _fail(f"extraction failed ({e}). Try copying the alert text more carefully.") from e

    typer.echo(_format_row(result.transaction))
    _warn_persistence(result.persistence_warning)


def _print_progress(event: ProgressEvent) -> None:
    status = "ok" if event.ok else "failed"
    typer.echo(f"[{event.percent:>3}%] {event.message_id} {status}")


@app.command("sync")
def sync_cmd(
    wait: bool = typer.Option(
        True, help="When not linked yet, wait for consent and then sync in the same run."
    ),
) -> None:
    """Fetch new alert emails and add their transactions to the ledger."""

    settings = load_settings()
    try:
        _require_openai_key()
        mailbox = _build_mailbox(settings)
    except ConfigurationError as e:
        raise _fail(str(e)) from e

    with mailbox:
        orchestrator = SyncOrchestrator(
            LedgerStore(settings.data_dir), mailbox, extractor=_build_extractor(settings)
        )
        try:
            result = orchestrator.sync(on_progress=_print_progress)
            if result.status is SyncStatus.AUTH_REQUESTED:
                if not wait:
                    typer.echo("Consent requested. Complete it in your browser, then sync again.")
                    return
                typer.echo("Waiting for mailbox consent in your browser...")
                mailbox.wait_for_token()
                result = orchestrator.sync(on_progress=_print_progress)
        except MailboxAuthError as e:
            raise _fail(f"{_RELINK_HINT} ({e})") from e
        except MailboxFetchError as e:
            raise _fail(f"sync failed; check your network and try again ({e}).") from e
        except (ConfigurationError, SyncInProgressError) as e:
            raise _fail(str(e)) from e

    if result.status is SyncStatus.NOTHING_NEW:
        typer.echo("No new alerts found.")
    elif result.status is SyncStatus.COMPLETED:
        msg = f"Added {result.added_count} transaction(s)."
        failed = len(result.failed_message_ids)
        if failed:
            msg += f" {failed} alert(s) could not be read and will be retried."
        typer.echo(msg)
    _warn_persistence(result.persistence_warning)


@app.command("link")
def link_cmd() -> None:
    """Run the mailbox consent flow and store the access token."""

    settings = load_settings()
    try:
        mailbox = _build_mailbox(settings)
    except ConfigurationError as e:
        raise _fail(str(e)) from e
    with mailbox:
        try:
            mailbox.request_token()
            typer.echo("Complete the consent in your browser...")
            mailbox.wait_for_token()
        except ValueError as e:
            raise _fail(str(e)) from e
        except MailboxAuthError as e:
            raise _fail(f"could not link the mailbox: {e}") from e
    typer.echo("Mailbox linked.")


@app.command("set-client-id")
def set_client_id_cmd(
    client_id: Annotated[str, typer.Argument(help="OAuth client id for mailbox access.")],
) -> None:
    """Save the OAuth client id. Any stored token is discarded."""

    settings = load_settings()
    try:
        save_client_id(settings.data_dir, client_id)
    except (ValueError, OSError) as e:
        raise _fail(str(e)) from e
    typer.echo("Client id saved. Run `inbox-ledger link` to grant mailbox access.")


@app.command("list")
def list_cmd(
    limit: int = typer.Option(20, min=1, help="Maximum number of transactions to show."),
) -> None:
    """Show the most recently added transactions."""

    store = LedgerStore(load_settings().data_dir)
    txs = store.state.transactions
    if not txs:
        typer.echo("No transactions yet. Use `add` or `sync`.")
        return
    for t in txs[:limit]:
        typer.echo(_format_row(t))


@app.command("stats")
def stats_cmd(
    days: int = typer.Option(7, min=1, help="Days to include in the daily spend view."),
) -> None:
    """Show spending totals, top category and recent daily spend."""

    txs = LedgerStore(load_settings().data_dir).state.transactions
    stats = compute_dashboard_stats(txs)
    typer.echo(f"Total spent:       {stats.total_spent:,.2f}")
    typer.echo(f"Top category:      {stats.top_category.value}")
    typer.echo(f"Transactions:      {stats.transaction_count}")
    typer.echo(f"Average spend:     {stats.avg_transaction:,.2f}")

    breakdown = category_breakdown(txs)
    if breakdown:
        typer.echo("\nBy category:")
        for row in breakdown:
            typer.echo(f"  {row.category.value:<18} {row.amount:>11,.2f}  {row.share:6.1%}")

    typer.echo(f"\nLast {days} days:")
    for day in daily_spend(txs, days=days):
        typer.echo(f"  {day.day.strftime('%a %Y-%m-%d')}  {day.amount:>11,.2f}")


@app.command("reset")
def reset_cmd(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Clear the client id, the stored token and all local history."""

    settings = load_settings()
    if not yes and not typer.confirm(
        "Reset everything? This clears your client id and all local history."
    ):
        raise typer.Exit(1)
    outcome = LedgerStore(settings.data_dir).reset()
    clear_local_config(settings.data_dir)
    _warn_persistence(outcome.warning)
    typer.echo("Local ledger and configuration cleared.")


@app.callback()
def _root(
    log_level: str | None = typer.Option(
        None, help="Logging level (falls back to INBOX_LEDGER_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Root command: load ``.env`` from the CWD and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
