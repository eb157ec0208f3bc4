"""
backend/app/providers/ergast.py

Purpose:
    Ergast-compatible (Jolpica) statistics client. Fetches season-scoped
    reference data, standings and classifications, pages through MRData
    tables, caches responses per resource TTL and hands typed candidate
    records to the sync pipeline.

Dependencies:
    - app.providers.http_client
    - app.providers.rate_limiter
    - app.providers.ergast_transformers
    - app.config
"""

import logging
import time
from typing import Any, Callable, Optional

from app.config import settings
from app.models.f1 import (
    ClassificationRow,
    CompetitorRecord,
    EventRecord,
    QualifyingRow,
    StandingsSnapshot,
    TeamRecord,
    VenueRecord,
)
from app.providers import ergast_transformers as tx
from app.providers.http_client import ProviderResponseError, ResilientClient
from app.providers.rate_limiter import RequestRateLimiter

logger = logging.getLogger("pitwall.ergast")

PROVIDER_NAME = "ergast"


def _transform_rows(rows: list[dict[str, Any]], fn: Callable[[dict[str, Any]], Any], what: str) -> list:
    """Apply a row transformer, dropping rows the provider sent malformed."""
    out = []
    for row in rows:
        try:
            out.append(fn(row))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ergast: dropping malformed %s row: %s", what, exc)
    return out


class ErgastProvider:
    """Ergast/Jolpica F1 API client with TTL cache and pagination."""

    def __init__(self):
        self._client = ResilientClient(
            PROVIDER_NAME,
            timeout=settings.ERGAST_TIMEOUT_SECONDS,
            max_retries=settings.ERGAST_MAX_RETRIES,
            base_delay=settings.ERGAST_BASE_DELAY_SECONDS,
        )
        self._limiter = RequestRateLimiter(settings.ERGAST_RATE_LIMIT_RPM)
        self._cache: dict[str, dict[str, Any]] = {}

    @property
    def circuit_open(self) -> bool:
        return self._client.circuit.is_open

    def _get_cached(self, key: str, ttl: int) -> Optional[Any]:
        entry = self._cache.get(key)
        if entry and (time.time() - entry["ts"]) < ttl:
            return entry["data"]
        return None

    def _set_cache(self, key: str, data: Any) -> None:
        self._cache[key] = {"data": data, "ts": time.time()}

    def clear_cache(self) -> int:
        cleared = len(self._cache)
        self._cache.clear()
        return cleared

    async def _get_page(self, path: str, limit: int, offset: int) -> dict[str, Any]:
        await self._limiter.acquire()
        base_url = settings.ERGAST_BASE_URL.rstrip("/")
        payload = await self._client.get_json(
            f"{base_url}{path}.json",
            params={"limit": limit, "offset": offset},
        )
        data = payload.get("MRData") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise ProviderResponseError(PROVIDER_NAME, f"missing MRData for {path}")
        return data

    async def _fetch_pages(self, path: str) -> list[dict[str, Any]]:
        """Fetch every page of an MRData table."""
        limit = max(1, int(settings.ERGAST_PAGE_LIMIT))
        offset = 0
        pages: list[dict[str, Any]] = []
        while True:
            data = await self._get_page(path, limit, offset)
            pages.append(data)
            try:
                total = int(data.get("total") or 0)
            except (TypeError, ValueError):
                total = 0
            offset += limit
            if offset >= total:
                return pages

    async def _fetch_list(self, path: str, table_key: str, list_key: str, ttl: int) -> list[dict[str, Any]]:
        cache_key = f"list:{path}"
        cached = self._get_cached(cache_key, ttl)
        if cached is not None:
            return cached
        rows: list[dict[str, Any]] = []
        for page in await self._fetch_pages(path):
            rows.extend((page.get(table_key) or {}).get(list_key) or [])
        self._set_cache(cache_key, rows)
        logger.info("Ergast: %d rows from %s", len(rows), path)
        return rows

    async def _fetch_race_rows(self, path: str, rows_key: str) -> list[dict[str, Any]]:
        """Flatten per-race rows (Results / QualifyingResults) across pages.

        Only non-empty classifications are cached so an unpublished result is
        re-fetched on the next call.
        """
        cache_key = f"race:{path}"
        cached = self._get_cached(cache_key, settings.ERGAST_CACHE_TTL_RESULTS)
        if cached is not None:
            return cached
        rows: list[dict[str, Any]] = []
        for page in await self._fetch_pages(path):
            for race in (page.get("RaceTable") or {}).get("Races") or []:
                rows.extend(race.get(rows_key) or [])
        if rows:
            self._set_cache(cache_key, rows)
        return rows

    async def _fetch_latest_standings(self, path: str, ttl: int) -> dict[str, Any] | None:
        cache_key = f"standings:{path}"
        cached = self._get_cached(cache_key, ttl)
        if cached is not None:
            return cached or None
        merged: dict[str, Any] | None = None
        for page in await self._fetch_pages(path):
            lists = (page.get("StandingsTable") or {}).get("StandingsLists") or []
            if not lists:
                continue
            current = lists[0]
            if merged is None:
                merged = dict(current)
                merged["DriverStandings"] = list(current.get("DriverStandings") or [])
                merged["ConstructorStandings"] = list(current.get("ConstructorStandings") or [])
            else:
                merged["DriverStandings"].extend(current.get("DriverStandings") or [])
                merged["ConstructorStandings"].extend(current.get("ConstructorStandings") or [])
        self._set_cache(cache_key, merged or {})
        return merged

    # ---------- Season reference data ----------

    async def get_teams(self, season: int) -> list[TeamRecord]:
        rows = await self._fetch_list(
            f"/{int(season)}/constructors", "ConstructorTable", "Constructors", settings.ERGAST_CACHE_TTL_TEAMS,
        )
        return _transform_rows(rows, tx.transform_team, "constructor")

    async def get_competitors(self, season: int) -> list[CompetitorRecord]:
        rows = await self._fetch_list(
            f"/{int(season)}/drivers", "DriverTable", "Drivers", settings.ERGAST_CACHE_TTL_COMPETITORS,
        )
        return _transform_rows(rows, tx.transform_competitor, "driver")

    async def get_venues(self) -> list[VenueRecord]:
        rows = await self._fetch_list(
            "/circuits", "CircuitTable", "Circuits", settings.ERGAST_CACHE_TTL_VENUES,
        )
        return _transform_rows(rows, tx.transform_venue, "circuit")

    async def get_schedule(self, season: int) -> list[EventRecord]:
        rows = await self._fetch_list(
            f"/{int(season)}", "RaceTable", "Races", settings.ERGAST_CACHE_TTL_SCHEDULE,
        )
        return _transform_rows(rows, tx.transform_event, "race")

    # ---------- Standings ----------

    async def get_competitor_standings(self, season: int) -> StandingsSnapshot | None:
        standings = await self._fetch_latest_standings(
            f"/{int(season)}/driverStandings", settings.ERGAST_CACHE_TTL_STANDINGS,
        )
        return tx.transform_competitor_standings(standings, int(season))

    async def get_team_standings(self, season: int) -> StandingsSnapshot | None:
        standings = await self._fetch_latest_standings(
            f"/{int(season)}/constructorStandings", settings.ERGAST_CACHE_TTL_STANDINGS,
        )
        return tx.transform_team_standings(standings, int(season))

    # ---------- Classifications ----------

    async def get_race_classification(self, season: int, round: int) -> list[ClassificationRow]:
        rows = await self._fetch_race_rows(f"/{int(season)}/{int(round)}/results", "Results")
        return tx.transform_race_results(rows)

    async def get_qualifying_classification(self, season: int, round: int) -> list[QualifyingRow]:
        rows = await self._fetch_race_rows(f"/{int(season)}/{int(round)}/qualifying", "QualifyingResults")
        return tx.transform_qualifying_results(rows)

    async def aclose(self) -> None:
        await self._client.aclose()


ergast_provider = ErgastProvider()
