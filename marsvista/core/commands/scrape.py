"""
Command-line entry point for scrape jobs and completeness maintenance.

Usage:
    python -m marsvista.core.commands.scrape init-db
    python -m marsvista.core.commands.scrape sol curiosity 4102
    python -m marsvista.core.commands.scrape range perseverance 1000 1010 --delay-ms 250
    python -m marsvista.core.commands.scrape full curiosity --confirm
    python -m marsvista.core.commands.scrape incremental --source perseverance
    python -m marsvista.core.commands.scrape retry-failed curiosity --limit 50
    python -m marsvista.core.commands.scrape current-sol perseverance
    python -m marsvista.core.commands.scrape summary
    python -m marsvista.core.commands.scrape backfill curiosity
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from marsvista.config import settings
from marsvista.core.ingestion.completeness_service import completeness_service
from marsvista.core.ingestion.current_sol_service import CurrentSolUnavailableError
from marsvista.core.ingestion.sol_scraper import sol_scraper
from marsvista.core.ingestion.source_adapters import UnknownSourceError, registered_sources
from marsvista.core.ops.scrape_orchestrator import scrape_orchestrator
from marsvista.core.shared.database_service import database_service

logger = logging.getLogger("marsvista.commands.scrape")


def _print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _run(args: argparse.Namespace) -> int:
    await database_service.init_db()
    try:
        if args.command == "init-db":
            logger.info("Database initialized")
            return 0

        if args.command == "sol":
            result = await scrape_orchestrator.run_sol(args.source, args.sol)
        elif args.command == "range":
            result = await scrape_orchestrator.run_range(
                args.source, args.start_sol, args.end_sol, delay_ms=args.delay_ms
            )
        elif args.command == "full":
            result = await scrape_orchestrator.run_full(
                args.source, confirm=args.confirm, start_sol=args.start_sol, delay_ms=args.delay_ms
            )
        elif args.command == "incremental":
            result = await scrape_orchestrator.run_incremental(
                sources=args.source or None, lookback_sols=args.lookback, trigger="manual"
            )
        elif args.command == "retry-failed":
            result = await scrape_orchestrator.run_retry_failed(args.source, limit=args.limit)
        elif args.command == "current-sol":
            sol = await scrape_orchestrator.get_current_sol(args.source)
            _print_json({"source": args.source, "current_sol": sol})
            return 0
        elif args.command == "summary":
            async with database_service.get_session() as session:
                summaries = await completeness_service.summarize_all(session)
            _print_json({name: s.to_dict() for name, s in summaries.items()})
            return 0
        elif args.command == "backfill":
            async with database_service.get_session() as session:
                changed = await completeness_service.backfill(session, args.source)
            _print_json({"source": args.source, "records_changed": changed})
            return 0
        else:
            raise ValueError(f"Unknown command {args.command}")

        _print_json(result)
        return 0 if result["status"] in ("success", "partial") else 1
    finally:
        await sol_scraper.close()
        await database_service.close()


def build_parser() -> argparse.ArgumentParser:
    sources = registered_sources()
    parser = argparse.ArgumentParser(description="MarsVista rover photo scraping")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    p = sub.add_parser("sol", help="Scrape a single sol")
    p.add_argument("source", choices=sources)
    p.add_argument("sol", type=int)

    p = sub.add_parser("range", help="Scrape an inclusive sol range")
    p.add_argument("source", choices=sources)
    p.add_argument("start_sol", type=int)
    p.add_argument("end_sol", type=int)
    p.add_argument("--delay-ms", type=int, default=None, help="Delay between sols")

    p = sub.add_parser("full", help="Scrape from the first sol through the current sol")
    p.add_argument("source", choices=sources)
    p.add_argument("--confirm", action="store_true", help="Required: confirm a full scrape")
    p.add_argument("--start-sol", type=int, default=None)
    p.add_argument("--delay-ms", type=int, default=None)

    p = sub.add_parser("incremental", help="Re-check recent sols of active sources")
    p.add_argument("--source", action="append", choices=sources, help="Repeatable; defaults to active sources")
    p.add_argument("--lookback", type=int, default=None, help="Sols behind the current sol")

    p = sub.add_parser("retry-failed", help="Re-scrape sols marked failed")
    p.add_argument("source", choices=sources)
    p.add_argument("--limit", type=int, default=100)

    p = sub.add_parser("current-sol", help="Show the current sol of a source")
    p.add_argument("source", choices=sources)

    sub.add_parser("summary", help="Completeness summary per source")

    p = sub.add_parser("backfill", help="Reconcile completeness records with stored photos")
    p.add_argument("source", choices=sources)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    try:
        return asyncio.run(_run(args))
    except (ValueError, UnknownSourceError, CurrentSolUnavailableError) as e:
        logger.error(str(e))
        return 2
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
