"""
Unit tests for the command line entry points.
"""

from datetime import datetime
from types import SimpleNamespace

import pytest

from technews import models
from technews.cli import ledger as ledger_cli
from technews.cli.run import build_parser
from technews.models import Outcome, Stage
from technews.services.stage_ledger import StageLedger


@pytest.fixture
def cli_db(db, monkeypatch):
    monkeypatch.setattr(ledger_cli, "get_db_session", lambda: db)
    return db


class TestRunParser:
    def test_defaults(self):
        args = build_parser().parse_args([])
        assert args.max_items == 20
        assert not args.dry_run
        assert args.digest is None

    def test_flags(self):
        args = build_parser().parse_args(
            ["--max-items", "5", "--skip-publish", "--digest", "day", "--digest", "week", "--dry-run"]
        )
        assert args.max_items == 5
        assert args.skip_publish
        assert args.digest == ["day", "week"]
        assert args.dry_run

    def test_unknown_digest_kind(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--digest", "year"])


class TestLedgerCommands:
    def test_status(self, cli_db, make_item, capsys):
        item = make_item()
        StageLedger(cli_db).record(item.id, Stage.INGESTED, Outcome.SUCCESS)

        ledger_cli.cmd_status(SimpleNamespace(json=False))

        out = capsys.readouterr().out
        assert "Items: 1" in out
        assert "ingested" in out

    def test_history_unknown_item(self, cli_db, capsys):
        with pytest.raises(SystemExit):
            ledger_cli.cmd_history(SimpleNamespace(item_id="0" * 16))
        assert "not found" in capsys.readouterr().out

    def test_requeue_single(self, cli_db, make_item, capsys):
        item_id = make_item().id
        ledger = StageLedger(cli_db)
        ledger.record(item_id, Stage.INGESTED, Outcome.SUCCESS)
        ledger.record(item_id, Stage.FILTERED, Outcome.SKIPPED)

        ledger_cli.cmd_requeue(SimpleNamespace(item_id=item_id, all=False, stage="filtered", outcome=None))

        assert "Requeued 1" in capsys.readouterr().out
        assert [i.id for i in StageLedger(cli_db).items_eligible_for(Stage.FILTERED)] == [item_id]

    def test_requeue_needs_target(self, cli_db):
        with pytest.raises(SystemExit):
            ledger_cli.cmd_requeue(SimpleNamespace(item_id=None, all=False, stage="filtered", outcome=None))

    def test_parked(self, cli_db, make_item, capsys):
        item = make_item(title="La BCE maintient ses taux")
        ledger = StageLedger(cli_db)
        ledger.record(item.id, Stage.INGESTED, Outcome.SUCCESS)
        ledger.record(item.id, Stage.FILTERED, Outcome.SKIPPED, error_detail="score=0 keywords=[none]")

        ledger_cli.cmd_parked(SimpleNamespace(stage=None, outcome=None, limit=50))

        out = capsys.readouterr().out
        assert "Parked items (1)" in out
        assert "score=0 keywords=[none]" in out

    def test_digests_listing(self, cli_db, capsys):
        cli_db.add_all(
            [
                models.DigestRecord(
                    period_kind="week",
                    period_key=key,
                    period_start=datetime(2025, 1, 1),
                    period_end=datetime(2025, 1, 8),
                    item_count=count,
                    remote_page_id=page_id,
                )
                for key, count, page_id in (("2024-12-30", 4, "page-1"), ("2025-01-06", 0, None))
            ]
            + [
                models.DigestRecord(
                    period_kind="day",
                    period_key="2025-01-08",
                    period_start=datetime(2025, 1, 7, 23),
                    period_end=datetime(2025, 1, 8, 23),
                    item_count=2,
                )
            ]
        )
        cli_db.commit()

        ledger_cli.cmd_digests(SimpleNamespace(kind="week", limit=30))

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 3
        assert lines[1].split() == ["week", "2025-01-06", "0", "-"]
        assert lines[2].split() == ["week", "2024-12-30", "4", "page-1"]

    def test_digests_empty(self, cli_db, capsys):
        ledger_cli.cmd_digests(SimpleNamespace(kind=None, limit=30))
        assert "No digests yet" in capsys.readouterr().out
