from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from .census_service import LocationNotFoundError, UpstreamAPIError
from .config import load_settings
from .safety_intel_service import generate_safety_intel
from .schemas import MAX_RADIUS_MILES, ErrorResponse, SiteAnalysisQuery
from .site_analysis_service import AnalysisContext, analyze_site, lookup_tracts_by_point

settings = load_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="SiteEngine Analysis API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _validation_detail(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get(
    "/api/site/analyze",
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def site_analyze(
    address: str = Query(..., min_length=1, max_length=200),
    radii: list[float] = Query([1.0, 3.0, 5.0]),
    include_safety: bool = Query(True),
    include_geometry: bool = Query(False),
) -> dict:
    """Demographic rollups for concentric radii around an address.

    Returns per-radius summaries, display cards, a map overlay and the safety
    narrative. Missing tract or county data degrades the result (see
    ``errors``) rather than failing the request.
    """
    try:
        query = SiteAnalysisQuery(address=address, radii=radii)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=_validation_detail(exc)) from exc

    try:
        async with AnalysisContext.from_settings(settings) as context:
            return await analyze_site(
                context,
                query,
                settings=settings,
                include_safety=include_safety,
                include_geometry=include_geometry,
            )
    except LocationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except UpstreamAPIError as exc:
        logger.warning("Site analysis aborted: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/api/site/tracts")
async def site_tracts(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius: float = Query(5.0, gt=0, le=MAX_RADIUS_MILES),
    include_geometry: bool = Query(True),
) -> dict:
    """Census tracts whose centroid lies within radius + 1.5 miles of a point."""
    async with AnalysisContext.from_settings(settings) as context:
        return await lookup_tracts_by_point(
            context,
            lat=lat,
            lon=lon,
            radius_miles=radius,
            include_geometry=include_geometry,
        )


@app.get("/api/site/safety")
async def site_safety(label: str = Query(..., min_length=3, max_length=200)) -> dict:
    result = await generate_safety_intel(
        label.strip(),
        api_key=settings.gemini_api_key,
        timeout_seconds=settings.safety_intel_timeout,
        model_name=settings.safety_intel_model,
    )
    return result.model_dump(mode="json")
