"""
backend/scripts/sync_season.py

Purpose:
    Operator CLI for one-off season syncs and result ingestion without the
    API server. Runs go through the same worker entrypoints as the scheduler,
    so they are recorded in sync_runs.

Usage:
    cd backend && python -m scripts.sync_season --season 2024
    cd backend && python -m scripts.sync_season --season 2024 --results 5
    cd backend && python -m scripts.sync_season --season 2024 --skip-sync --results 5 --results 6
"""

from __future__ import annotations

import argparse
import asyncio
import logging

import app.database as _db
from app.middleware.logging import setup_logging
from app.providers.ergast import ergast_provider
from app.providers.http_client import ProviderError
from app.services.event_handlers.scoring_handlers import ScoringQueueHooks
from app.services.event_result_service import ResultIngestError
from app.workers.result_resolver import run_result_ingest
from app.workers.season_sync import run_season_sync


async def _run(args: argparse.Namespace) -> int:
    await _db.connect_db()
    exit_code = 0
    try:
        if not args.skip_sync:
            result = await run_season_sync(args.season, trigger="cli")
            print("[sync] season:", result["season"], "success:", result["success"])
            print("[sync] counts:", dict(result["per_family_counts"]))
            print("[sync] created:", dict(result["created"]))
            for warning in result["warnings"]:
                print("[sync] warning:", warning["code"], warning["natural_key"], warning["message"])
            for error in result["errors"]:
                print("[sync] error:", error["step"], error["type"], error["message"])
            if not result["success"]:
                exit_code = 1

        # No event bus in the CLI: enqueue scoring directly.
        hooks = ScoringQueueHooks()
        for round_no in args.results or []:
            try:
                summary = await run_result_ingest(args.season, round_no, trigger="cli", hooks=hooks)
            except (ResultIngestError, ProviderError) as exc:
                print(f"[results] {args.season}/{round_no} failed: {exc}")
                exit_code = 1
                continue
            print(f"[results] {args.season}/{round_no}:", dict(summary))
        return exit_code
    finally:
        await ergast_provider.aclose()
        await _db.close_db()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync an F1 season and optionally ingest race results")
    parser.add_argument("--season", type=int, required=True, help="Season year, e.g. 2024")
    parser.add_argument("--results", action="append", type=int, default=[], help="Round to ingest results for (repeatable)")
    parser.add_argument("--skip-sync", action="store_true", help="Only ingest results, do not sync the season")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main() -> int:
    args = _build_parser().parse_args()
    setup_logging()
    if args.verbose:
        logging.getLogger("pitwall").setLevel(logging.DEBUG)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
