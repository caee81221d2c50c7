from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from datetime import datetime, timezone
from typing import Any, TypeVar

import httpx

from . import census_service
from .census_service import AcsYearData, ApiConfig, Tract
from .config import Settings
from .geo import Point
from .presentation import build_cards, build_map_overlay
from .radius_aggregator import aggregate_radii
from .safety_intel_service import generate_safety_intel
from .schemas import SiteAnalysisQuery

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AnalysisContext:
    """Resources owned by a single analysis run.

    Holds the HTTP client and every task the run spawns. Leaving the context
    cancels whatever is still in flight and closes the client, so results of
    an abandoned run are dropped instead of arriving late.
    """

    def __init__(self, config: ApiConfig, *, client: httpx.AsyncClient | None = None):
        self.config = config
        self._client = client
        self._owns_client = client is None
        self._tasks: set[asyncio.Task[Any]] = set()
        self.closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> AnalysisContext:
        return cls(ApiConfig(timeout=settings.http_timeout, retries=settings.http_retries))

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("AnalysisContext is not open.")
        return self._client

    async def __aenter__(self) -> AnalysisContext:
        if self.closed:
            raise RuntimeError("AnalysisContext cannot be reopened.")
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def spawn(self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending_tasks(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    async def aclose(self) -> None:
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.info("Cancelling %d in-flight task(s) for abandoned analysis run", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
        if self._owns_client and self._client is not None:
            await self._client.aclose()
        self._client = None
        self.closed = True


def tract_to_dict(tract: Tract, *, include_geometry: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "geoid": tract.geoid,
        "state": tract.state,
        "county": tract.county,
        "tract": tract.tract,
        "centroid": {"lat": tract.centroid.latitude, "lon": tract.centroid.longitude},
        "distance_miles": round(tract.distance_miles, 4),
    }
    if include_geometry:
        out["geometry"] = tract.geometry
    return out


def _counties(tracts: tuple[Tract, ...]) -> list[str]:
    return sorted({tract.state + tract.county for tract in tracts})


async def analyze_site(
    context: AnalysisContext,
    query: SiteAnalysisQuery,
    *,
    settings: Settings,
    include_safety: bool = True,
    include_geometry: bool = False,
) -> dict[str, Any]:
    """Geocode an address and roll up ACS demographics for each requested radius.

    Only a failed geocode raises (LocationNotFoundError / UpstreamAPIError).
    Tract lookup and per-county ACS failures are recorded in ``errors`` and the
    affected inputs are left out of the summaries.
    """
    radii = sorted(set(query.radii))
    current_year = settings.acs_current_year
    baseline_year = settings.acs_baseline_year

    site = await census_service.geocode_address(context.client, query.address, config=context.config)
    logger.info("Geocoded %r to %s", query.address, site.label)

    safety_task = None
    if include_safety:
        safety_task = context.spawn(
            generate_safety_intel(
                site.label,
                api_key=settings.gemini_api_key,
                timeout_seconds=settings.safety_intel_timeout,
                model_name=settings.safety_intel_model,
            )
        )

    tracts, tract_errors = await census_service.resolve_tracts(
        context.client,
        site.point,
        radii[-1],
        config=context.config,
        include_geometry=include_geometry,
    )

    if tracts:
        current, baseline = await census_service.fetch_acs_years(
            context.client,
            tracts,
            current_year=current_year,
            baseline_year=baseline_year,
            config=context.config,
            api_key=settings.census_api_key,
        )
    else:
        current = AcsYearData(year=current_year, records={})
        baseline = AcsYearData(year=baseline_year, records={})

    summaries = aggregate_radii(
        tracts,
        radii,
        current.records,
        baseline.records,
        current_year=current_year,
        baseline_year=baseline_year,
    )

    safety = await safety_task if safety_task is not None else None
    errors = [*tract_errors, *current.errors, *baseline.errors]

    tracts_block: dict[str, Any] = {
        "resolved_count": len(tracts),
        "counties": _counties(tracts),
        "current_year_records": len(current.records),
        "baseline_year_records": len(baseline.records),
    }
    if include_geometry:
        tracts_block["features"] = [tract_to_dict(tract, include_geometry=True) for tract in tracts]

    return {
        "input": {
            "address": query.address,
            "radii": radii,
            "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        },
        "site": {
            "label": site.label,
            "lat": site.point.latitude,
            "lon": site.point.longitude,
        },
        "survey_years": {"current": current_year, "baseline": baseline_year},
        "tracts": tracts_block,
        "summaries": [summary.model_dump(mode="json") for summary in summaries],
        "cards": build_cards(summaries),
        "map": build_map_overlay(site.point, radii, label=site.label),
        "safety": safety.model_dump(mode="json") if safety is not None else None,
        "errors": errors,
        "status": "partial" if errors else "complete",
    }


async def lookup_tracts_by_point(
    context: AnalysisContext,
    *,
    lat: float,
    lon: float,
    radius_miles: float,
    include_geometry: bool = True,
) -> dict[str, Any]:
    tracts, errors = await census_service.resolve_tracts(
        context.client,
        Point(latitude=lat, longitude=lon),
        radius_miles,
        config=context.config,
        include_geometry=include_geometry,
    )
    return {
        "center": {"lat": lat, "lon": lon},
        "radius_miles": radius_miles,
        "count": len(tracts),
        "counties": _counties(tracts),
        "tracts": [tract_to_dict(tract, include_geometry=include_geometry) for tract in tracts],
        "errors": errors,
    }
