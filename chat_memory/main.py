#!/usr/bin/env python3
"""
Telegram conversational memory

Indexes private Telegram chats into per-account Qdrant collections and
searches them.
"""

import asyncio
import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .models import SearchFilters
from .service import (
    INDEXING_COMPLETE,
    INDEXING_ERROR,
    INDEXING_PROGRESS,
    RagService,
    create_service,
)
from .settings import CLIArgs, settings

logger = logging.getLogger(__name__)

COMMANDS = ["status", "index", "reindex", "search", "stats", "watch"]


def log_event(event: str, data: Dict[str, Any]) -> None:
    """Report indexing events on the console."""
    if event == INDEXING_PROGRESS:
        logger.info(
            f"[{data['account_id']}] {data['indexed_chats']}/{data['total_chats']} chats, "
            f"{data['messages_processed']} messages - {data['current_chat']}"
        )
    elif event == INDEXING_COMPLETE:
        logger.info(f"[{data['account_id']}] indexing {data['state']}")
    elif event == INDEXING_ERROR:
        logger.error(f"[{data['account_id']}] indexing failed: {data['error']}")


async def run_command(service: RagService, args: CLIArgs) -> int:
    """Execute one CLI command. Returns the process exit code."""
    if args.command == "status":
        status = await service.get_status()
        print(status.model_dump_json(indent=2))
        return 0 if status.vector_store and status.embedder and status.model else 1

    if not args.account:
        logger.error(f"--account is required for '{args.command}'")
        return 2

    if args.command == "index":
        service.start_indexing(args.account)
        await service.wait_idle()
    elif args.command == "reindex":
        await service.reindex(args.account, args.chat)
        await service.wait_idle()
    elif args.command == "search":
        if not args.query:
            logger.error("--query is required for 'search'")
            return 2
        filters = SearchFilters(
            chat_id=args.chat,
            date_from=args.date_from,
            date_to=args.date_to,
            limit=args.limit,
        )
        results = await service.search(args.query, args.account, filters)
        print(json.dumps([r.model_dump() for r in results], indent=2, ensure_ascii=False))
    elif args.command == "stats":
        stats = await service.get_index_stats(args.account)
        print(stats.model_dump_json(indent=2))
    elif args.command == "watch":
        service.start_indexing(args.account)
        await service.wait_idle()
        await service.watch(args.account)
        source = await service.indexer.clients.for_account(args.account)
        await source.wait_disconnected()

    return 0


def setup_logging(log_level: str):
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def parse_args(argv: Optional[List[str]] = None) -> CLIArgs:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Telegram conversational memory")

    parser.add_argument("command", choices=COMMANDS, help="Action to run")
    parser.add_argument("--account", type=str, help="Account id (session file name)")
    parser.add_argument("--chat", type=str, help="Restrict to one chat id")
    parser.add_argument("--query", type=str, help="Search query text")
    parser.add_argument(
        "--from", dest="date_from", type=int, help="Earliest chunk start (epoch seconds)"
    )
    parser.add_argument(
        "--to", dest="date_to", type=int, help="Latest chunk end (epoch seconds)"
    )
    parser.add_argument("--limit", type=int, help="Maximum number of results")
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )

    args = parser.parse_args(argv)

    return CLIArgs(
        command=args.command,
        account=args.account,
        chat=args.chat,
        query=args.query,
        date_from=args.date_from,
        date_to=args.date_to,
        limit=args.limit,
        log_level=args.log_level,
    )


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(args.log_level)

    service = await create_service(on_event=log_event)
    try:
        return await run_command(service, args)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
        return 130
    finally:
        await service.close()


def entrypoint():
    """Entry point for the console script."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    entrypoint()
