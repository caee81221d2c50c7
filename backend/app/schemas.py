from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_RADIUS_MILES = 50.0
MAX_RADII = 6


class SiteAnalysisQuery(BaseModel):
    address: str = Field(..., min_length=5, max_length=200)
    radii: list[float] = Field(default_factory=lambda: [1.0, 3.0, 5.0], min_length=1, max_length=MAX_RADII)

    @field_validator("address")
    @classmethod
    def validate_address(cls, address: str) -> str:
        cleaned = " ".join(address.split())
        if len(cleaned) < 5:
            raise ValueError("address must contain at least 5 non-blank characters")
        return cleaned

    @field_validator("radii")
    @classmethod
    def validate_radii(cls, radii: list[float]) -> list[float]:
        for radius in radii:
            if not 0 < radius <= MAX_RADIUS_MILES:
                raise ValueError(
                    f"radii must be greater than 0 and at most {MAX_RADIUS_MILES:g} miles. Got {radius}"
                )
        return sorted(set(radii))


class ErrorResponse(BaseModel):
    detail: str


class Projection(BaseModel):
    year: int
    horizon_years: int
    value: float


class AgeCohort(BaseModel):
    label: str
    count: int = Field(..., ge=0)


class RadiusSummary(BaseModel):
    radius_miles: float
    tract_count: int = Field(..., ge=0)
    tract_geoids: list[str] = Field(default_factory=list)

    population: float = 0.0
    households: float = 0.0
    income: float = 0.0
    home_value: float = 0.0
    vintage_year: float = 0.0
    rent_share: str = "0.0%"
    own_share: str = "0.0%"
    vehicles_per_household: float = 0.0
    avg_household_size: float = 0.0

    baseline_population: float = 0.0
    baseline_income: float = 0.0
    population_growth_rate: float
    income_growth_rate: float
    projected_population: list[Projection] = Field(default_factory=list)
    projected_income: list[Projection] = Field(default_factory=list)

    age_distribution: list[AgeCohort] = Field(default_factory=list)


# --- Safety intel (generative narrative) ---


class SafetyGrades(BaseModel):
    model_config = ConfigDict(extra="ignore")

    overall: str = Field(..., min_length=1, max_length=3)
    violent: str = Field(..., min_length=1, max_length=3)
    property: str = Field(..., min_length=1, max_length=3)
    other: str = Field(..., min_length=1, max_length=3)


class CrimeTypeGrade(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., min_length=1, max_length=80)
    grade: str = Field(..., min_length=1, max_length=3)


class SafetyBreakdown(BaseModel):
    model_config = ConfigDict(extra="ignore")

    violent: list[CrimeTypeGrade] = Field(default_factory=list, max_length=20)
    property: list[CrimeTypeGrade] = Field(default_factory=list, max_length=20)
    other: list[CrimeTypeGrade] = Field(default_factory=list, max_length=20)


class SectorGrades(BaseModel):
    model_config = ConfigDict(extra="ignore")

    n: str
    s: str
    e: str
    w: str
    ne: str
    nw: str
    se: str
    sw: str


class NearbySchool(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=160)
    grade: str | None = Field(default=None, max_length=20)
    rating: float | None = None
    level: str | None = Field(default=None, max_length=40)
    distance_miles: float | None = Field(default=None, ge=0)


class SafetyIntel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    safety_summary: str = Field(..., min_length=1, max_length=2000)
    grades: SafetyGrades
    breakdown: SafetyBreakdown
    sectors: SectorGrades
    schools: list[NearbySchool] = Field(default_factory=list, max_length=25)


class SafetyIntelResponse(BaseModel):
    location_label: str
    source: Literal["gemini", "fallback"]
    model: str | None = None
    generated_at: datetime
    fallback_reason: str | None = None
    intel: SafetyIntel
