"""Unit tests for the command-line interface."""

from __future__ import annotations

import pytest

from inbox_synopsis import cli
from inbox_synopsis.models import (
    EnqueueResult,
    IngestResult,
    ProcessedMessage,
    ProcessingError,
    QueueStats,
    QuotaInfo,
    SynopsisResult,
)
from inbox_synopsis.store import SynopsisRepository
from tests.fakes import make_message


@pytest.fixture
def patched_settings(settings, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return settings


def test_stats_reports_counter(patched_settings, capsys: pytest.CaptureFixture[str]) -> None:
    repo = SynopsisRepository(patched_settings.store_db_path)
    repo.initialize()
    repo.increment_counter_sync(patched_settings.owner_id)

    assert cli.main(["stats"]) == 0
    assert "Messages analyzed for me: 1" in capsys.readouterr().out


def test_ingest_without_token_fails(patched_settings, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["ingest"]) == 1

    err = capsys.readouterr().err
    assert "unauthenticated" in err
    assert "inbox-synopsis login" in err


def test_unknown_subcommand_exits() -> None:
    with pytest.raises(SystemExit):
        cli.main(["frobnicate"])


def test_print_inline_result(capsys: pytest.CaptureFixture[str]) -> None:
    synopsis = SynopsisResult(summary="Report ready.", urgency_score=72, action="Review", classification="Work")
    result = IngestResult(
        messages=[ProcessedMessage(make_message("m1"), synopsis)],
        next_page_token="abc",
        processing_errors=[ProcessingError(message_id="m2", kind="rate_limited", detail="quota")],
        rate_limit_info=QuotaInfo(retry_after_ms=30000),
    )

    cli._print_result(result)

    out = capsys.readouterr().out
    assert " 72\tWork\tReview\tSubject m1\tReport ready." in out
    assert "ERROR\tm2\trate_limited\tquota" in out
    assert "Rate limited, retry after 30s" in out
    assert "Next page token: abc" in out


def test_print_queued_result(capsys: pytest.CaptureFixture[str]) -> None:
    result = IngestResult(
        queue_stats=QueueStats(total=50, pending=50, processing=0, retrying=0, average_wait_seconds=0.0),
        enqueued=EnqueueResult(accepted=50, rejected=0),
    )

    cli._print_result(result)

    assert "Queued 50 messages (0 rejected); queue holds 50" in capsys.readouterr().out
