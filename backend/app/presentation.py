from __future__ import annotations

from typing import Any

from .geo import METERS_PER_MILE, Point
from .radius_aggregator import round_half_up
from .schemas import Projection, RadiusSummary

GRADE_COLORS = {
    "A": "#059669",
    "B": "#4ADE80",
    "C": "#F59E0B",
    "D": "#FB923C",
}
RISK_COLOR = "#DC2626"


def grade_color(grade: str | None) -> str:
    if not grade:
        return RISK_COLOR
    return GRADE_COLORS.get(grade.strip()[:1].upper(), RISK_COLOR)


def _fmt_radius(radius_miles: float) -> str:
    return f"{radius_miles:g} Mi"


def _projection_at(projections: list[Projection], horizon_years: int) -> Projection | None:
    return next((item for item in projections if item.horizon_years == horizon_years), None)


def _rounded(value: float | None) -> int | None:
    if value is None:
        return None
    return round_half_up(value)


def build_radius_card(summary: RadiusSummary) -> dict[str, Any]:
    """Display-ready values for one radius band."""
    pop_near = _projection_at(summary.projected_population, 3)
    pop_far = _projection_at(summary.projected_population, 8)
    income_far = _projection_at(summary.projected_income, 8)

    # Population growth is shown as a simple five-year multiple of the annual rate;
    # income growth is compounded.
    pop_growth_5yr = summary.population_growth_rate * 100 * 5
    income_growth_5yr = ((1 + summary.income_growth_rate) ** 5 - 1) * 100

    return {
        "radius_label": _fmt_radius(summary.radius_miles),
        "radius_miles": summary.radius_miles,
        "tract_count": summary.tract_count,
        "population": _rounded(summary.population),
        "population_near_term": {
            "year": pop_near.year if pop_near else None,
            "value": _rounded(pop_near.value if pop_near else None),
        },
        "population_forward": {
            "year": pop_far.year if pop_far else None,
            "value": _rounded(pop_far.value if pop_far else None),
        },
        "population_growth_5yr": f"{pop_growth_5yr:.1f}%",
        "income": _rounded(summary.income),
        "income_forward": {
            "year": income_far.year if income_far else None,
            "value": _rounded(income_far.value if income_far else None),
        },
        "income_growth_5yr": f"{income_growth_5yr:.1f}%",
        "home_value": _rounded(summary.home_value),
        "vintage_year": _rounded(summary.vintage_year),
        "rent_vs_own": f"{summary.rent_share} / {summary.own_share}",
        "vehicles_per_household": f"{summary.vehicles_per_household:.2f}",
        "avg_household_size": f"{summary.avg_household_size:.2f}",
        "age_distribution": [
            {"name": cohort.label, "value": cohort.count} for cohort in summary.age_distribution
        ],
    }


def build_cards(summaries: list[RadiusSummary]) -> list[dict[str, Any]]:
    return [build_radius_card(summary) for summary in summaries]


def build_map_overlay(center: Point, radii: list[float], *, label: str | None = None) -> dict[str, Any]:
    """Center marker plus concentric rings, largest first so it is drawn underneath."""
    rings = [
        {
            "radius_miles": radius,
            "radius_meters": round(radius * METERS_PER_MILE, 2),
            "label": _fmt_radius(radius),
        }
        for radius in sorted(set(radii), reverse=True)
    ]
    return {
        "center": {"lat": center.latitude, "lon": center.longitude, "label": label},
        "rings": rings,
        "fit_radius_meters": rings[0]["radius_meters"] if rings else None,
    }
