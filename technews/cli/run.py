# technews/cli/run.py
"""
Run the news pipeline once.

Usage:
    technews-run
    technews-run --max-items 10 --dry-run
    technews-run --skip-publish --skip-digest
    technews-run --digest day --digest week
    python -m technews.cli.run --json
"""

import argparse
import json
import sys

from dotenv import load_dotenv

load_dotenv()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Tech/finance news pipeline: fetch, filter, summarize, publish, digest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full run with default limits
  technews-run

  # Preview what a run would do, without writing anything
  technews-run --dry-run

  # Only refresh summaries and publish them
  technews-run --skip-ingest --skip-content --skip-filter --skip-digest
        """,
    )
    parser.add_argument("--max-items", type=int, default=20, help="Max items per stage (default: 20)")
    parser.add_argument("--skip-ingest", action="store_true", help="Don't fetch feeds")
    parser.add_argument("--skip-content", action="store_true", help="Don't extract bodies / record ingestion")
    parser.add_argument("--skip-filter", action="store_true", help="Don't run the relevance filter")
    parser.add_argument("--skip-summarize", action="store_true", help="Don't summarize")
    parser.add_argument("--skip-publish", action="store_true", help="Don't publish")
    parser.add_argument("--skip-digest", action="store_true", help="Don't build digests")
    parser.add_argument(
        "--digest",
        action="append",
        choices=["day", "week", "month"],
        help="Digest kind to build (repeatable, default: all)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report eligible work, write nothing")
    parser.add_argument("--json", action="store_true", help="Print run statistics as JSON")
    return parser


def print_stats(stats) -> None:
    print(f"\n=== Run {stats.run_id}{' (DRY RUN)' if stats.dry_run else ''} ===\n")
    print(f"Ingested:   {stats.ingested}")
    print(f"Filtered:   {stats.filtered}")
    print(f"Summarized: {stats.summarized}")
    print(f"Published:  {stats.published}")
    print(f"Digests:    {stats.digests}")
    print(f"Errors:     {stats.errors}")
    print(f"Duration:   {stats.duration_ms}ms")

    print("\nStages:")
    for name, result in stats.stages.items():
        metrics = ", ".join(f"{k}={v}" for k, v in result.metrics.items())
        print(f"  {name}: {result.status} ({result.duration_ms}ms) {metrics}")
        for error in result.errors:
            print(f"    - {error}")
    print()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    from technews.config import get_settings
    from technews.database import init_db, session_scope
    from technews.logging_config import configure_logging
    from technews.models import PeriodKind
    from technews.pipeline import PipelineDriver, RunOptions

    settings = get_settings()
    configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)
    init_db()

    options = RunOptions(
        max_items=args.max_items,
        skip_ingest=args.skip_ingest,
        skip_content=args.skip_content,
        skip_filter=args.skip_filter,
        skip_summarize=args.skip_summarize,
        skip_publish=args.skip_publish,
        skip_digest=args.skip_digest,
        dry_run=args.dry_run,
    )
    if args.digest:
        options.digest_kinds = [PeriodKind(kind) for kind in dict.fromkeys(args.digest)]

    with session_scope() as db:
        stats = PipelineDriver(db, settings=settings).run(options)

    if args.json:
        print(json.dumps(stats.to_dict(), indent=2))
    else:
        print_stats(stats)

    return 1 if stats.errors else 0


if __name__ == "__main__":
    sys.exit(main())
