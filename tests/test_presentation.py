"""Tests for display cards and the map overlay."""
from __future__ import annotations

import pytest

from backend.app.geo import Point
from backend.app.presentation import build_cards, build_map_overlay, build_radius_card, grade_color
from backend.app.schemas import AgeCohort, Projection, RadiusSummary


def _summary(**overrides) -> RadiusSummary:
    values = {
        "radius_miles": 1.0,
        "tract_count": 2,
        "tract_geoids": ["55025000100", "55025000200"],
        "population": 3000.0,
        "households": 1000.0,
        "income": 56000.4,
        "home_value": 330000.6,
        "vintage_year": 1982.2,
        "rent_share": "46.0%",
        "own_share": "54.0%",
        "vehicles_per_household": 1.7,
        "avg_household_size": 2.8,
        "population_growth_rate": 0.02,
        "income_growth_rate": 0.03,
        "projected_population": [
            Projection(year=2025, horizon_years=3, value=3183.624),
            Projection(year=2030, horizon_years=8, value=3514.98),
        ],
        "projected_income": [
            Projection(year=2025, horizon_years=3, value=61192.0),
            Projection(year=2030, horizon_years=8, value=70939.6),
        ],
        "age_distribution": [AgeCohort(label="Under 20", count=660)],
    }
    values.update(overrides)
    return RadiusSummary(**values)


@pytest.mark.parametrize(
    ("grade", "color"),
    [
        ("A+", "#059669"),
        ("B-", "#4ADE80"),
        ("c", "#F59E0B"),
        ("D", "#FB923C"),
        ("F", "#DC2626"),
        ("", "#DC2626"),
        (None, "#DC2626"),
    ],
)
def test_grade_color(grade, color) -> None:
    assert grade_color(grade) == color


def test_radius_card_formatting() -> None:
    card = build_radius_card(_summary())
    assert card["radius_label"] == "1 Mi"
    assert card["population"] == 3000
    assert card["population_near_term"] == {"year": 2025, "value": 3184}
    assert card["population_forward"] == {"year": 2030, "value": 3515}
    assert card["population_growth_5yr"] == "10.0%"
    assert card["income"] == 56000
    assert card["income_forward"] == {"year": 2030, "value": 70940}
    assert card["income_growth_5yr"] == "15.9%"
    assert card["home_value"] == 330001
    assert card["vintage_year"] == 1982
    assert card["rent_vs_own"] == "46.0% / 54.0%"
    assert card["vehicles_per_household"] == "1.70"
    assert card["avg_household_size"] == "2.80"
    assert card["age_distribution"] == [{"name": "Under 20", "value": 660}]


def test_fractional_radius_label() -> None:
    cards = build_cards([_summary(radius_miles=0.5, age_distribution=[]), _summary(radius_miles=2.5)])
    assert [card["radius_label"] for card in cards] == ["0.5 Mi", "2.5 Mi"]
    assert cards[0]["age_distribution"] == []


def test_map_overlay_rings_largest_first() -> None:
    overlay = build_map_overlay(Point(43.0731, -89.4012), [1, 5, 3, 3], label="Madison")
    assert overlay["center"] == {"lat": 43.0731, "lon": -89.4012, "label": "Madison"}
    assert [ring["label"] for ring in overlay["rings"]] == ["5 Mi", "3 Mi", "1 Mi"]
    assert overlay["rings"][2]["radius_meters"] == pytest.approx(1609.34)
    assert overlay["fit_radius_meters"] == pytest.approx(8046.7)


def test_card_values_round_halves_up() -> None:
    card = build_radius_card(_summary(population=2500.5, income=56000.5, home_value=330000.5))
    assert card["population"] == 2501
    assert card["income"] == 56001
    assert card["home_value"] == 330001
