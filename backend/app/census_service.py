from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .geo import (
    TRACT_DISTANCE_BUFFER_MILES,
    Point,
    bounding_envelope,
    envelope_margin_degrees,
    haversine_miles,
)

logger = logging.getLogger(__name__)

NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
TIGERWEB_TRACTS_QUERY_URL = (
    "https://tigerweb.geo.census.gov/arcgis/rest/services/TIGERweb/Tracts_Blocks/MapServer/10/query"
)
ACS5_URL_TEMPLATE = "https://api.census.gov/data/{year}/acs/acs5"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

ACS_VARIABLES = {
    "B01003_001E": "Population",
    "B11001_001E": "Households",
    "B19013_001E": "Med_HH_Inc",
    "B25077_001E": "Med_Home_Val",
    "B25035_001E": "Med_Year_Built",
    "B25010_001E": "Avg_HH_Size",
    "B25003_001E": "Tenure_Total",
    "B25003_002E": "Owner_Occ",
    "B25003_003E": "Renter_Occ",
    "B25046_001E": "Aggregate_Vehicles",
}

DemographicRecord = dict[str, str]


@dataclass(frozen=True)
class ApiConfig:
    timeout: float = 20.0
    retries: int = 3


class UpstreamAPIError(RuntimeError):
    def __init__(self, stage: str, message: str):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.message = message


class LocationNotFoundError(RuntimeError):
    pass


@dataclass(frozen=True)
class GeocodedSite:
    label: str
    point: Point


@dataclass(frozen=True)
class Tract:
    geoid: str
    state: str
    county: str
    tract: str
    centroid: Point
    distance_miles: float
    geometry: dict[str, Any] | None = field(default=None, compare=False, repr=False)

    @property
    def county_key(self) -> tuple[str, str]:
        return (self.state, self.county)


@dataclass(frozen=True)
class AcsYearData:
    year: int
    records: dict[str, DemographicRecord]
    errors: list[dict[str, str]] = field(default_factory=list)


def _backoff_seconds(attempt: int) -> float:
    return min(8.0, 0.5 * (2**attempt))


def _short_error_text(text: str, limit: int = 240) -> str:
    one_line = " ".join(text.split())
    if len(one_line) <= limit:
        return one_line
    return one_line[:limit] + "..."


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, Any] | None,
    stage: str,
    config: ApiConfig,
) -> Any:
    last_error: Exception | None = None
    headers = {"User-Agent": "siteengine-fastapi/0.1"}
    for attempt in range(config.retries + 1):
        try:
            response = await client.get(url, params=params, timeout=config.timeout, headers=headers)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            last_error = exc
            if attempt < config.retries:
                logger.debug("%s: %s, retry %d/%d", stage, exc, attempt + 1, config.retries)
                await asyncio.sleep(_backoff_seconds(attempt))
                continue
            raise UpstreamAPIError(stage, f"Network error after retries: {exc!s}") from exc

        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            last_error = UpstreamAPIError(
                stage, f"HTTP {status}: {_short_error_text(response.text)}"
            )
            if attempt < config.retries:
                logger.debug("%s: HTTP %d, retry %d/%d", stage, status, attempt + 1, config.retries)
                await asyncio.sleep(_backoff_seconds(attempt))
                continue
            raise last_error

        if 400 <= status < 500:
            raise UpstreamAPIError(stage, f"HTTP {status}: {_short_error_text(response.text)}")

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamAPIError(
                stage, f"Invalid JSON in upstream response (HTTP {status})"
            ) from exc

    if last_error is not None:
        raise UpstreamAPIError(stage, f"Failed request after retries: {last_error!s}")
    raise UpstreamAPIError(stage, "Failed request after retries.")


async def geocode_address(
    client: httpx.AsyncClient,
    address: str,
    *,
    config: ApiConfig,
) -> GeocodedSite:
    payload = await request_json(
        client,
        NOMINATIM_SEARCH_URL,
        params={"q": address, "format": "json", "limit": 1},
        stage="geocoder",
        config=config,
    )
    if not isinstance(payload, list) or not payload:
        raise LocationNotFoundError("Location identification failed.")

    hit = payload[0]
    try:
        lat = float(hit["lat"])
        lon = float(hit["lon"])
    except (KeyError, TypeError, ValueError) as exc:
        raise LocationNotFoundError("Location identification failed.") from exc

    label = str(hit.get("display_name") or address).strip()
    return GeocodedSite(label=label, point=Point(latitude=lat, longitude=lon))


def _pad_code(value: Any, width: int) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text.isdigit() or len(text) > width:
        return None
    return text.zfill(width)


def build_geoid(state: Any, county: Any, tract: Any) -> str | None:
    state_code = _pad_code(state, 2)
    county_code = _pad_code(county, 3)
    tract_code = _pad_code(tract, 6)
    if not state_code or not county_code or not tract_code:
        return None
    return state_code + county_code + tract_code


def _parse_coordinate(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def _tract_from_feature(
    feature: Any,
    center: Point,
    *,
    include_geometry: bool,
) -> Tract | None:
    if not isinstance(feature, dict):
        return None
    attrs = feature.get("attributes")
    if not isinstance(attrs, dict):
        return None

    geoid = build_geoid(attrs.get("STATE"), attrs.get("COUNTY"), attrs.get("TRACT"))
    lat = _parse_coordinate(attrs.get("INTPTLAT"))
    lon = _parse_coordinate(attrs.get("INTPTLON"))
    if geoid is None or lat is None or lon is None:
        return None

    geometry = feature.get("geometry") if include_geometry else None
    return Tract(
        geoid=geoid,
        state=geoid[:2],
        county=geoid[2:5],
        tract=geoid[5:],
        centroid=Point(latitude=lat, longitude=lon),
        distance_miles=haversine_miles(center.latitude, center.longitude, lat, lon),
        geometry=geometry if isinstance(geometry, dict) else None,
    )


async def resolve_tracts(
    client: httpx.AsyncClient,
    center: Point,
    max_radius_miles: float,
    *,
    config: ApiConfig,
    include_geometry: bool = False,
) -> tuple[tuple[Tract, ...], list[dict[str, str]]]:
    """Return tracts whose centroid lies within max radius + buffer of the center.

    Never raises for upstream trouble: an unreachable service or an empty
    feature list produces an empty tuple and an entry in the error list.
    """
    margin = envelope_margin_degrees(max_radius_miles, center.latitude)
    min_lon, min_lat, max_lon, max_lat = bounding_envelope(center, margin)
    params = {
        "geometry": f"{min_lon},{min_lat},{max_lon},{max_lat}",
        "geometryType": "esriGeometryEnvelope",
        "inSR": 4326,
        "spatialRel": "esriSpatialRelIntersects",
        "outFields": "STATE,COUNTY,TRACT,INTPTLAT,INTPTLON",
        "outSR": 4326,
        "returnGeometry": "true" if include_geometry else "false",
        "f": "json",
    }

    try:
        payload = await request_json(
            client,
            TIGERWEB_TRACTS_QUERY_URL,
            params=params,
            stage="tracts",
            config=config,
        )
    except UpstreamAPIError as exc:
        logger.warning("Tract lookup failed, continuing with zero tracts: %s", exc)
        return (), [{"stage": "tracts", "message": str(exc)}]

    if not isinstance(payload, dict) or "error" in payload:
        detail = payload.get("error") if isinstance(payload, dict) else None
        message = f"Tract service returned an error: {detail!r}" if detail else "Unexpected tract payload."
        logger.warning("%s", message)
        return (), [{"stage": "tracts", "message": message}]

    features = payload.get("features")
    if not isinstance(features, list) or not features:
        return (), [{"stage": "tracts", "message": "No tracts intersect the search envelope."}]

    cutoff = max_radius_miles + TRACT_DISTANCE_BUFFER_MILES
    by_geoid: dict[str, Tract] = {}
    dropped = 0
    for feature in features:
        tract = _tract_from_feature(feature, center, include_geometry=include_geometry)
        if tract is None:
            dropped += 1
            continue
        if tract.geoid in by_geoid:
            continue
        if tract.distance_miles <= cutoff:
            by_geoid[tract.geoid] = tract

    if dropped:
        logger.debug("Dropped %d malformed tract features", dropped)

    tracts = sorted(by_geoid.values(), key=lambda item: (item.distance_miles, item.geoid))
    logger.info("Resolved %d tracts within %.2f mi", len(tracts), cutoff)
    return tuple(tracts), []


def rows_to_records(rows: Any, stage: str) -> dict[str, DemographicRecord]:
    """Zip a Census API table (header row + data rows) into GEOID-keyed records."""
    if not isinstance(rows, list) or not rows:
        raise UpstreamAPIError(stage, "ACS response is not a non-empty table.")
    header = rows[0]
    if not isinstance(header, list) or not {"state", "county", "tract"} <= set(header):
        raise UpstreamAPIError(stage, "ACS response header is missing geography columns.")

    records: dict[str, DemographicRecord] = {}
    for row in rows[1:]:
        if not isinstance(row, list) or len(row) != len(header):
            continue
        record = {str(key): "" if value is None else str(value) for key, value in zip(header, row)}
        geoid = build_geoid(record.get("state"), record.get("county"), record.get("tract"))
        if geoid is None:
            continue
        records[geoid] = record
    return records


async def fetch_county_acs(
    client: httpx.AsyncClient,
    *,
    year: int,
    state: str,
    county: str,
    config: ApiConfig,
    api_key: str = "",
) -> dict[str, DemographicRecord]:
    stage = f"acs:{year}:{state}{county}"
    params: dict[str, Any] = {
        "get": ",".join(ACS_VARIABLES),
        "for": "tract:*",
        "in": f"state:{state} county:{county}",
    }
    if api_key:
        params["key"] = api_key
    rows = await request_json(
        client,
        ACS5_URL_TEMPLATE.format(year=year),
        params=params,
        stage=stage,
        config=config,
    )
    return rows_to_records(rows, stage)


async def fetch_acs_year(
    client: httpx.AsyncClient,
    tracts: tuple[Tract, ...] | list[Tract],
    year: int,
    *,
    config: ApiConfig,
    api_key: str = "",
) -> AcsYearData:
    counties = sorted({tract.county_key for tract in tracts})

    async def _one(state: str, county: str) -> tuple[dict[str, DemographicRecord], dict[str, str] | None]:
        try:
            records = await fetch_county_acs(
                client,
                year=year,
                state=state,
                county=county,
                config=config,
                api_key=api_key,
            )
            return records, None
        except UpstreamAPIError as exc:
            logger.warning("ACS %s fetch failed for county %s%s: %s", year, state, county, exc)
            return {}, {"stage": f"acs:{year}", "county": f"{state}{county}", "message": str(exc)}

    results = await asyncio.gather(*(_one(state, county) for state, county in counties))

    merged: dict[str, DemographicRecord] = {}
    errors: list[dict[str, str]] = []
    for records, error in results:
        merged.update(records)
        if error is not None:
            errors.append(error)

    logger.info(
        "ACS %s: %d records from %d/%d counties",
        year,
        len(merged),
        len(counties) - len(errors),
        len(counties),
    )
    return AcsYearData(year=year, records=merged, errors=errors)


async def fetch_acs_years(
    client: httpx.AsyncClient,
    tracts: tuple[Tract, ...] | list[Tract],
    *,
    current_year: int,
    baseline_year: int,
    config: ApiConfig,
    api_key: str = "",
) -> tuple[AcsYearData, AcsYearData]:
    current, baseline = await asyncio.gather(
        fetch_acs_year(client, tracts, current_year, config=config, api_key=api_key),
        fetch_acs_year(client, tracts, baseline_year, config=config, api_key=api_key),
    )
    return current, baseline
