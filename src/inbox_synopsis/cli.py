"""Command-line interface for Inbox Synopsis.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from inbox_synopsis import __version__
from inbox_synopsis.agent.email_agent import EmailAgent
from inbox_synopsis.config import get_settings
from inbox_synopsis.exceptions import InboxSynopsisError
from inbox_synopsis.identity import TokenFileIdentityProvider
from inbox_synopsis.models import IngestResult
from inbox_synopsis.store import SynopsisRepository
from inbox_synopsis.utils import configure_logging

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="inbox-synopsis", description="Inbox Synopsis")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("login", help="Run the Gmail consent flow and store the token")

    ingest_parser = subparsers.add_parser(
        "ingest",
        help="Fetch one page of recent mail and generate synopses for new messages",
    )
    ingest_parser.add_argument(
        "--page-size",
        type=int,
        default=None,
        help="Messages to fetch (default: settings gmail_page_size, max gmail_max_page_size)",
    )
    ingest_parser.add_argument("--page-token", default=None, help="Continuation token from a previous run")
    ingest_parser.add_argument(
        "--drain",
        action="store_true",
        help="Keep running until the background queue is empty",
    )

    subparsers.add_parser("stats", help="Show how many messages have been analyzed")

    return parser


def _print_result(result: IngestResult) -> None:
    for processed in result.messages:
        s = processed.synopsis
        print(f"{s.urgency_score:>3}\t{s.classification}\t{s.action}\t{processed.message.subject}\t{s.summary}")

    for error in result.processing_errors or []:
        print(f"ERROR\t{error.message_id}\t{error.kind}\t{error.detail}")

    if result.rate_limit_info is not None:
        retry = result.rate_limit_info.retry_after_ms
        retry_part = f", retry after {retry / 1000:.0f}s" if retry is not None else ""
        print(f"Rate limited{retry_part}")

    if result.enqueued is not None and result.queue_stats is not None:
        print(
            f"Queued {result.enqueued.accepted} messages ({result.enqueued.rejected} rejected); "
            f"queue holds {result.queue_stats.total}"
        )

    if result.next_page_token:
        print(f"Next page token: {result.next_page_token}")


async def _cmd_login() -> int:
    identity = TokenFileIdentityProvider(get_settings(), interactive=True)
    caller = await identity.current_user()
    print(f"Authenticated as {caller.id}")
    return 0


async def _cmd_ingest(args: argparse.Namespace) -> int:
    agent = EmailAgent(get_settings())
    await agent.start()
    try:
        result = await agent.ingest_for_current_user(page_size=args.page_size, page_token=args.page_token)
        _print_result(result)
        if args.drain and result.queue_stats is not None:
            await agent.queue.wait_until_empty()
            stats = agent.queue_stats()
            print(f"Queue drained; {stats.total} messages left")
    finally:
        await agent.shutdown()
    return 0


def _cmd_stats() -> int:
    settings = get_settings()
    repo = SynopsisRepository(settings.store_db_path)
    repo.initialize()
    print(f"Messages analyzed for {settings.owner_id}: {repo.analyzed_count(settings.owner_id)}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Inbox Synopsis CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("inbox_synopsis_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    try:
        if parsed.command == "login":
            return asyncio.run(_cmd_login())
        if parsed.command == "ingest":
            return asyncio.run(_cmd_ingest(parsed))
        if parsed.command == "stats":
            return _cmd_stats()
    except InboxSynopsisError as exc:
        logger.error("command_failed", command=parsed.command, error_kind=exc.kind, error=str(exc))
        print(f"Error ({exc.kind}): {exc}", file=sys.stderr)
        return 1

    logger.error("unknown_command", command=parsed.command)
    return 2


if __name__ == "__main__":
    sys.exit(main())
