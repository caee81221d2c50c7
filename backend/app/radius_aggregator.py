"""Per-radius demographic rollups over resolved census tracts.

Each radius is an inclusive disc around the site: a tract belongs to every
band whose radius is at least its centroid distance, so larger bands are
supersets of smaller ones. Raw ACS values are only counted when strictly
positive; zero, blank and the negative "unavailable" sentinels are treated as
missing rather than as real values.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .census_service import DemographicRecord, Tract
from .schemas import AgeCohort, Projection, RadiusSummary

logger = logging.getLogger(__name__)

POPULATION = "B01003_001E"
HOUSEHOLDS = "B11001_001E"
MEDIAN_HH_INCOME = "B19013_001E"
MEDIAN_HOME_VALUE = "B25077_001E"
MEDIAN_YEAR_BUILT = "B25035_001E"
AVG_HH_SIZE = "B25010_001E"
TENURE_TOTAL = "B25003_001E"
OWNER_OCCUPIED = "B25003_002E"
RENTER_OCCUPIED = "B25003_003E"
AGGREGATE_VEHICLES = "B25046_001E"

DEFAULT_POPULATION_GROWTH = 0.012
DEFAULT_INCOME_GROWTH = 0.024

# Years past the current survey year.
PROJECTION_HORIZONS = (3, 8)

# Placeholder split of total population; not derived from age-bracket tables.
AGE_COHORT_SHARES = (
    ("Under 20", 0.22),
    ("20-34", 0.25),
    ("35-49", 0.20),
    ("50-64", 0.18),
    ("65+", 0.15),
)


def clean_value(raw: Any) -> float | None:
    """Parse a raw ACS value, returning None unless it is a finite positive number."""
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def sum_clean(records: Iterable[Mapping[str, Any]], key: str) -> float:
    total = 0.0
    for record in records:
        value = clean_value(record.get(key))
        if value is not None:
            total += value
    return total


def weighted_average(
    records: Iterable[Mapping[str, Any]],
    value_key: str,
    weight_key: str,
) -> float:
    """Average of value_key weighted by weight_key, over records where both are positive.

    Returns 0.0 when no record carries weight.
    """
    weighted_sum = 0.0
    total_weight = 0.0
    for record in records:
        value = clean_value(record.get(value_key))
        weight = clean_value(record.get(weight_key))
        if value is None or weight is None:
            continue
        weighted_sum += value * weight
        total_weight += weight
    if total_weight <= 0:
        return 0.0
    return weighted_sum / total_weight


def compound_annual_growth(
    current: float,
    baseline: float,
    years: int,
    default_rate: float,
) -> float:
    if years <= 0:
        raise ValueError(f"Growth period must be positive. Got {years}")
    if current <= 0:
        return default_rate
    if baseline <= 0:
        baseline = current
    return (current / baseline) ** (1 / years) - 1


def project(value: float, annual_rate: float, years: int) -> float:
    return value * (1 + annual_rate) ** years


def share_pct(part: float, whole: float) -> str:
    if whole <= 0:
        return "0.0%"
    return f"{part / whole * 100:.1f}%"


def round_half_up(value: float) -> int:
    """Nearest integer with halves rounded up (2.5 -> 3), unlike round()."""
    return math.floor(value + 0.5)


def synthetic_age_distribution(population: float) -> list[AgeCohort]:
    return [AgeCohort(label=label, count=round_half_up(population * share)) for label, share in AGE_COHORT_SHARES]


def tracts_within(tracts: Iterable[Tract], radius_miles: float) -> list[Tract]:
    return [tract for tract in tracts if tract.distance_miles <= radius_miles]


def _projections(value: float, rate: float, current_year: int) -> list[Projection]:
    return [
        Projection(year=current_year + horizon, horizon_years=horizon, value=project(value, rate, horizon))
        for horizon in PROJECTION_HORIZONS
    ]


def summarize_radius(
    radius_miles: float,
    tracts: Iterable[Tract],
    current_records: Mapping[str, DemographicRecord],
    baseline_records: Mapping[str, DemographicRecord],
    *,
    current_year: int,
    baseline_year: int,
    include_age_distribution: bool = False,
) -> RadiusSummary:
    members = tracts_within(tracts, radius_miles)
    geoids = sorted({tract.geoid for tract in members})
    current = [current_records[geoid] for geoid in geoids if geoid in current_records]
    baseline = [baseline_records[geoid] for geoid in geoids if geoid in baseline_records]
    years = current_year - baseline_year

    population = sum_clean(current, POPULATION)
    baseline_population = sum_clean(baseline, POPULATION)
    population_rate = compound_annual_growth(
        population, baseline_population, years, DEFAULT_POPULATION_GROWTH
    )

    income = weighted_average(current, MEDIAN_HH_INCOME, HOUSEHOLDS)
    baseline_income = weighted_average(baseline, MEDIAN_HH_INCOME, HOUSEHOLDS)
    income_rate = compound_annual_growth(income, baseline_income, years, DEFAULT_INCOME_GROWTH)

    households = sum_clean(current, HOUSEHOLDS)
    tenure_total = sum_clean(current, TENURE_TOTAL)
    vehicles = sum_clean(current, AGGREGATE_VEHICLES)

    return RadiusSummary(
        radius_miles=radius_miles,
        tract_count=len(geoids),
        tract_geoids=geoids,
        population=population,
        households=households,
        income=income,
        home_value=weighted_average(current, MEDIAN_HOME_VALUE, HOUSEHOLDS),
        vintage_year=weighted_average(current, MEDIAN_YEAR_BUILT, HOUSEHOLDS),
        rent_share=share_pct(sum_clean(current, RENTER_OCCUPIED), tenure_total),
        own_share=share_pct(sum_clean(current, OWNER_OCCUPIED), tenure_total),
        vehicles_per_household=vehicles / households if households > 0 else 0.0,
        avg_household_size=weighted_average(current, AVG_HH_SIZE, HOUSEHOLDS),
        baseline_population=baseline_population,
        baseline_income=baseline_income,
        population_growth_rate=population_rate,
        income_growth_rate=income_rate,
        projected_population=_projections(population, population_rate, current_year),
        projected_income=_projections(income, income_rate, current_year),
        age_distribution=synthetic_age_distribution(population) if include_age_distribution else [],
    )


def aggregate_radii(
    tracts: Sequence[Tract],
    radii: Iterable[float],
    current_records: Mapping[str, DemographicRecord],
    baseline_records: Mapping[str, DemographicRecord],
    *,
    current_year: int,
    baseline_year: int,
) -> list[RadiusSummary]:
    ordered = sorted(set(radii))
    summaries = [
        summarize_radius(
            radius,
            tracts,
            current_records,
            baseline_records,
            current_year=current_year,
            baseline_year=baseline_year,
            include_age_distribution=index == 0,
        )
        for index, radius in enumerate(ordered)
    ]
    for summary in summaries:
        logger.debug(
            "radius %.2f mi: %d tracts, population %.0f",
            summary.radius_miles,
            summary.tract_count,
            summary.population,
        )
    return summaries
