# technews/cli/ledger.py
"""
CLI commands for inspecting and repairing the stage ledger.

Usage:
    technews-ledger status
    technews-ledger history <item_id>
    technews-ledger parked --stage summarized
    technews-ledger requeue <item_id> --stage published
    technews-ledger requeue --all --stage summarized --outcome failed
    technews-ledger digest week --key 2025-01-06
    technews-ledger digests --kind week
    technews-ledger backfill-bodies --limit 50
    technews-ledger init-db
"""

import argparse
import json
import sys

from dotenv import load_dotenv

load_dotenv()

STAGE_CHOICES = ["ingested", "filtered", "summarized", "published"]


def get_db_session():
    """Get a database session."""
    from technews.database import SessionLocal

    return SessionLocal()


def cmd_status(args):
    """Show per-stage counts and eligible work."""
    from technews.models import STAGE_ORDER
    from technews.services.stage_ledger import StageLedger

    db = get_db_session()
    try:
        ledger = StageLedger(db)
        stats = ledger.stats()

        if args.json:
            payload = stats.to_dict()
            payload["eligible"] = {stage.value: ledger.count_eligible(stage) for stage in STAGE_ORDER}
            print(json.dumps(payload, indent=2))
            return

        print("\n=== Ledger Status ===\n")
        print(f"Items: {stats.total_items}")
        print(f"Synced to destination: {stats.synced}")
        print(f"Last event: {stats.last_event_at.isoformat() if stats.last_event_at else '-'}")

        print(f"\n{'Stage':<12} {'success':>8} {'failed':>8} {'skipped':>8} {'eligible':>9}")
        for stage in STAGE_ORDER:
            print(
                f"{stage.value:<12} {stats.succeeded.get(stage.value, 0):>8} "
                f"{stats.failed.get(stage.value, 0):>8} {stats.skipped.get(stage.value, 0):>8} "
                f"{ledger.count_eligible(stage):>9}"
            )
        print()
    finally:
        db.close()


def cmd_history(args):
    """Show every ledger event for one item."""
    from technews.services.item_store import ItemStore
    from technews.services.stage_ledger import StageLedger

    db = get_db_session()
    try:
        item = ItemStore(db).find_by_id(args.item_id)
        if not item:
            print(f"Error: Item '{args.item_id}' not found")
            sys.exit(1)

        print(f"\n{item.id}  {item.title}")
        print(f"  {item.source_url}")
        print(f"  published {item.published_at.isoformat()}  body {len(item.body or '')} chars\n")

        for event in StageLedger(db).history(item.id):
            requeued = f"  (requeued {event.requeued_at.isoformat()})" if event.requeued_at else ""
            score = f"  score={event.score:g}" if event.score is not None else ""
            print(f"  {event.occurred_at.isoformat()}  {event.stage:<11} {event.outcome:<8}{score}{requeued}")
            if event.error_detail:
                print(f"      {event.error_detail}")
        print()
    finally:
        db.close()


def cmd_parked(args):
    """List items parked by a failed or skipped event."""
    from technews.services.stage_ledger import StageLedger

    db = get_db_session()
    try:
        parked = StageLedger(db).parked_items(args.stage)
        if args.outcome:
            parked = [(item, event) for item, event in parked if event.outcome == args.outcome]

        print(f"\n=== Parked items ({len(parked)}) ===\n")
        for item, event in parked[: args.limit]:
            print(f"{item.id}  {event.stage:<11} {event.outcome:<8} {item.title[:70]}")
            if event.error_detail:
                print(f"    {event.error_detail}")
        if len(parked) > args.limit:
            print(f"\n... {len(parked) - args.limit} more")
        print()
    finally:
        db.close()


def cmd_requeue(args):
    """Make parked items eligible again at a stage."""
    from technews.services.stage_ledger import StageLedger

    if bool(args.item_id) == bool(args.all):
        print("Error: Give exactly one of <item_id> or --all")
        sys.exit(1)

    db = get_db_session()
    try:
        ledger = StageLedger(db)
        if args.all:
            count = ledger.requeue_stage(args.stage, args.outcome)
        else:
            count = ledger.requeue(args.item_id, args.stage)
        print(f"Requeued {count} event(s) at {args.stage}")
    finally:
        db.close()


def cmd_digest(args):
    """Build one digest, for the default period or an explicit key."""
    from technews.config import get_settings
    from technews.pipeline import PipelineDriver
    from technews.services.digest import DigestAggregator
    from technews.services.resilience import ConfigurationError

    settings = get_settings()
    db = get_db_session()
    driver = PipelineDriver(db, settings=settings)
    try:
        try:
            text_service = driver.text_service()
        except ConfigurationError as e:
            print(f"Warning: {e}; using fallback narrative")
            text_service = None

        aggregator = DigestAggregator(
            db,
            text_service=text_service,
            destination=None if args.dry_run else driver.digest_destination(),
            destination_database_id=settings.digest_database_id,
            timezone=settings.DIGEST_TIMEZONE,
            max_context_items=settings.DIGEST_MAX_CONTEXT_ITEMS,
            retry_policy=driver.retry_policy,
        )
        outcome = aggregator.run(args.kind, key=args.key, dry_run=args.dry_run)

        print(f"{outcome.kind.value}:{outcome.key} -> {outcome.status}")
        print(f"  Items: {outcome.item_count}")
        if outcome.tokens_used:
            print(f"  Tokens: {outcome.tokens_used}")
        if outcome.page_id:
            print(f"  Page: {outcome.page_id}")
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        driver.close()
        db.close()


def cmd_digests(args):
    """List the most recent digest records."""
    from technews.services.digest import DigestAggregator

    db = get_db_session()
    try:
        records = DigestAggregator(db).recent(kind=args.kind, limit=args.limit)
        if not records:
            print("No digests yet")
            return
        print(f"{'Kind':<7} {'Key':<11} {'Items':>5}  Page")
        for record in records:
            print(f"{record.period_kind:<7} {record.period_key:<11} {record.item_count:>5}  {record.remote_page_id or '-'}")
    finally:
        db.close()


def cmd_backfill_bodies(args):
    """Retry body extraction for items whose body is still short."""
    from technews.services.ingestion import IngestionService

    db = get_db_session()
    try:
        filled = IngestionService(db).backfill_bodies(limit=args.limit)
        print(f"Filled {filled} bodies")
    finally:
        db.close()


def cmd_init_db(args):
    """Create tables (local SQLite runs; use alembic elsewhere)."""
    from technews.database import DATABASE_URL, init_db

    init_db()
    print(f"Tables ready on {DATABASE_URL.split('@')[-1]}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Tech/finance news ledger CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Counts per stage
  technews-ledger status

  # Why is this item stuck?
  technews-ledger history 3f2a9c01d4e5b6a7

  # Retry every failed summary on the next run
  technews-ledger requeue --all --stage summarized --outcome failed

  # Rebuild last week's digest key explicitly
  technews-ledger digest week --key 2025-01-06
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # status command
    status_parser = subparsers.add_parser("status", help="Show ledger counts")
    status_parser.add_argument("--json", action="store_true", help="Print as JSON")
    status_parser.set_defaults(func=cmd_status)

    # history command
    history_parser = subparsers.add_parser("history", help="Show one item's events")
    history_parser.add_argument("item_id", help="Item id (16 hex chars)")
    history_parser.set_defaults(func=cmd_history)

    # parked command
    parked_parser = subparsers.add_parser("parked", help="List parked items")
    parked_parser.add_argument("--stage", choices=STAGE_CHOICES, help="Only this stage")
    parked_parser.add_argument("--outcome", choices=["failed", "skipped"], help="Only this outcome")
    parked_parser.add_argument("--limit", type=int, default=50, help="Max items to print (default: 50)")
    parked_parser.set_defaults(func=cmd_parked)

    # requeue command
    requeue_parser = subparsers.add_parser("requeue", help="Requeue parked items")
    requeue_parser.add_argument("item_id", nargs="?", help="Item id to requeue")
    requeue_parser.add_argument("--stage", choices=STAGE_CHOICES, required=True, help="Stage to retry")
    requeue_parser.add_argument("--all", action="store_true", help="Requeue every parked item at the stage")
    requeue_parser.add_argument("--outcome", choices=["failed", "skipped"], help="With --all: only this outcome")
    requeue_parser.set_defaults(func=cmd_requeue)

    # digest command
    digest_parser = subparsers.add_parser("digest", help="Build one digest")
    digest_parser.add_argument("kind", choices=["day", "week", "month"], help="Digest period kind")
    digest_parser.add_argument("--key", help="Period key: YYYY-MM-DD (day/week Monday) or YYYY-MM")
    digest_parser.add_argument("--dry-run", action="store_true", help="Count items only")
    digest_parser.set_defaults(func=cmd_digest)

    # digests command
    digests_parser = subparsers.add_parser("digests", help="List recent digests")
    digests_parser.add_argument("--kind", choices=["day", "week", "month"], help="Only this period kind")
    digests_parser.add_argument("--limit", type=int, default=30, help="Max records (default: 30)")
    digests_parser.set_defaults(func=cmd_digests)

    # backfill-bodies command
    backfill_parser = subparsers.add_parser("backfill-bodies", help="Retry body extraction")
    backfill_parser.add_argument("--limit", type=int, default=20, help="Max items (default: 20)")
    backfill_parser.set_defaults(func=cmd_backfill_bodies)

    # init-db command
    init_parser = subparsers.add_parser("init-db", help="Create tables")
    init_parser.set_defaults(func=cmd_init_db)

    args = parser.parse_args(argv)

    from technews.config import get_settings
    from technews.logging_config import configure_logging

    settings = get_settings()
    configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)

    args.func(args)


if __name__ == "__main__":
    main()
