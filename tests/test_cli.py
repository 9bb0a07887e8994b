from __future__ import annotations

import functools
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import inbox_ledger.cli as cli
from inbox_ledger.extraction import extract_transaction
from inbox_ledger.ledger import TRANSACTIONS_FILE, load_state
from inbox_ledger.mailbox import MailboxClient
from inbox_ledger.settings import load_settings
from tests.helpers.gmail_stub import VALID_TOKEN, GmailStub
from tests.helpers.openai_stub import OpenAIStub, debit

runner = CliRunner()

ALERT = "Rs.450.00 debited from a/c **1234 to SWIGGY on 14-03-25"


@pytest.fixture(autouse=True)
def _cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # Keep a developer's .env out of the run.
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")


@pytest.fixture
def model(monkeypatch: pytest.MonkeyPatch) -> OpenAIStub:
    stub = OpenAIStub(lambda text: debit() if "SWIGGY" in text else "not json")
    monkeypatch.setattr(
        cli,
        "_build_extractor",
        lambda settings: functools.partial(
            extract_transaction, client=stub, model=settings.model
        ),
    )
    return stub


@pytest.fixture
def gmail(monkeypatch: pytest.MonkeyPatch) -> GmailStub:
    stub = GmailStub()
    monkeypatch.setattr(
        cli,
        "_build_mailbox",
        lambda settings: MailboxClient(
            "client-123",
            http=stub.http_client(),
            token=VALID_TOKEN,
            token_path=settings.token_path,
        ),
    )
    return stub


# ---- add --------------------------------------------------------------------------


def test_add_prints_and_persists_transaction(model: OpenAIStub, data_dir: Path):
    result = runner.invoke(cli.app, ["add", ALERT])

    assert result.exit_code == 0, result.output
    assert "Swiggy" in result.output
    assert "Food & Dining" in result.output
    saved = json.loads((data_dir / TRANSACTIONS_FILE).read_text(encoding="utf-8"))
    assert [t["merchant"] for t in saved] == ["Swiggy"]
    assert model.alert_texts == [ALERT]


def test_add_reads_alert_from_stdin(model: OpenAIStub):
    result = runner.invoke(cli.app, ["add"], input=ALERT + "\n")

    assert result.exit_code == 0, result.output
    assert model.alert_texts == [ALERT]


def test_add_reports_extraction_failure(model: OpenAIStub, data_dir: Path):
    result = runner.invoke(cli.app, ["add", "something unrelated"])

    assert result.exit_code == 1
    assert "extraction failed" in result.output
    assert load_state(data_dir).transactions == ()


def test_add_requires_openai_key(model: OpenAIStub, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("OPENAI_API_KEY")

    result = runner.invoke(cli.app, ["add", ALERT])

    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output
    assert model.calls == []


def test_add_rejects_blank_text(model: OpenAIStub):
    result = runner.invoke(cli.app, ["add", "   "])

    assert result.exit_code == 1
    assert "no alert text" in result.output


# ---- sync -------------------------------------------------------------------------


def test_sync_reports_progress_then_nothing_new(model: OpenAIStub, gmail: GmailStub):
    gmail.add("m1", ALERT)
    gmail.add("m2", "Rs.10 debited at SOMEWHERE ELSE")

    first = runner.invoke(cli.app, ["sync"])

    assert first.exit_code == 0, first.output
    assert "[ 50%] m1 ok" in first.output
    assert "[100%] m2 failed" in first.output
    assert "Added 1 transaction(s). 1 alert(s) could not be read and will be retried." in (
        first.output
    )

    gmail.messages.pop("m2")
    second = runner.invoke(cli.app, ["sync"])

    assert second.exit_code == 0, second.output
    assert "No new alerts found." in second.output


def test_sync_rejected_token_points_to_link(model: OpenAIStub, gmail: GmailStub):
    gmail.add("m1", ALERT)
    gmail.reject_all = True

    result = runner.invoke(cli.app, ["sync"])

    assert result.exit_code == 1
    assert "inbox-ledger link" in result.output


def test_sync_listing_failure_is_reported(model: OpenAIStub, gmail: GmailStub):
    gmail.listing_status = 500

    result = runner.invoke(cli.app, ["sync"])

    assert result.exit_code == 1
    assert "sync failed" in result.output


def test_sync_without_client_id_explains_setup(model: OpenAIStub):
    result = runner.invoke(cli.app, ["sync"])

    assert result.exit_code == 1
    assert "set-client-id" in result.output


def _unlinked_mailbox(monkeypatch: pytest.MonkeyPatch, gmail: GmailStub) -> None:
    def consent(client_id: str, client_secret: str | None, timeout: float) -> str:
        return VALID_TOKEN

    monkeypatch.setattr(
        cli,
        "_build_mailbox",
        lambda settings: MailboxClient(
            "client-123",
            http=gmail.http_client(),
            token_path=settings.token_path,
            consent_runner=consent,
        ),
    )


def test_sync_waits_for_consent_then_syncs(
    model: OpenAIStub, monkeypatch: pytest.MonkeyPatch, data_dir: Path
):
    gmail = GmailStub()
    gmail.add("m1", ALERT)
    _unlinked_mailbox(monkeypatch, gmail)

    result = runner.invoke(cli.app, ["sync"])

    assert result.exit_code == 0, result.output
    assert "Waiting for mailbox consent" in result.output
    assert "Added 1 transaction(s)." in result.output
    assert (data_dir / "token.json").exists()


def test_sync_no_wait_only_requests_consent(model: OpenAIStub, monkeypatch: pytest.MonkeyPatch):
    gmail = GmailStub()
    gmail.add("m1", ALERT)
    _unlinked_mailbox(monkeypatch, gmail)

    result = runner.invoke(cli.app, ["sync", "--no-wait"])

    assert result.exit_code == 0, result.output
    assert "Consent requested" in result.output
    assert model.calls == []


# ---- configuration ------------------------------------------------------------------


def test_set_client_id_saves_and_drops_token(data_dir: Path):
    (data_dir / "token.json").write_text('{"access_token": "old"}', encoding="utf-8")

    result = runner.invoke(cli.app, ["set-client-id", "  new-client.apps.example  "])

    assert result.exit_code == 0, result.output
    assert load_settings().client_id == "new-client.apps.example"
    assert not (data_dir / "token.json").exists()


def test_link_stores_token(monkeypatch: pytest.MonkeyPatch, data_dir: Path):
    _unlinked_mailbox(monkeypatch, GmailStub())

    result = runner.invoke(cli.app, ["link"])

    assert result.exit_code == 0, result.output
    assert "Mailbox linked." in result.output
    assert json.loads((data_dir / "token.json").read_text(encoding="utf-8")) == {
        "access_token": VALID_TOKEN
    }


# ---- list / stats / reset -----------------------------------------------------------


def test_list_on_empty_ledger():
    result = runner.invoke(cli.app, ["list"])

    assert result.exit_code == 0
    assert "No transactions yet" in result.output


def test_list_and_stats_show_added_transactions(model: OpenAIStub):
    runner.invoke(cli.app, ["add", ALERT])
    runner.invoke(cli.app, ["add", ALERT])

    listed = runner.invoke(cli.app, ["list", "--limit", "1"])
    stats = runner.invoke(cli.app, ["stats", "--days", "3"])

    assert listed.exit_code == 0
    assert listed.output.count("Swiggy") == 1
    assert "2025-03-14" in listed.output
    assert stats.exit_code == 0, stats.output
    assert "Total spent:       900.00" in stats.output
    assert "Top category:      Food & Dining" in stats.output
    assert "Transactions:      2" in stats.output
    assert "Last 3 days:" in stats.output


def test_reset_requires_confirmation(model: OpenAIStub, data_dir: Path):
    runner.invoke(cli.app, ["add", ALERT])

    declined = runner.invoke(cli.app, ["reset"], input="n\n")

    assert declined.exit_code == 1
    assert len(load_state(data_dir).transactions) == 1


def test_reset_yes_clears_ledger_and_config(model: OpenAIStub, data_dir: Path):
    runner.invoke(cli.app, ["set-client-id", "client-123"])
    runner.invoke(cli.app, ["add", ALERT])

    result = runner.invoke(cli.app, ["reset", "--yes"])

    assert result.exit_code == 0, result.output
    assert load_state(data_dir).transactions == ()
    assert load_settings().client_id is None
