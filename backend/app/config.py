# Settings: load from .env at project root (or cwd) when the backend starts.
# Values already present in the environment always win over the file.

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_project_root = Path(__file__).resolve().parents[2]

DEFAULT_SAFETY_INTEL_MODEL = "gemini-2.5-flash"
DEFAULT_ACS_CURRENT_YEAR = 2022
ACS_BASELINE_OFFSET_YEARS = 5


def _load_dotenv() -> None:
    """Load .env from project root or cwd, first file found."""
    for path in (_project_root / ".env", Path.cwd() / ".env"):
        if path.is_file():
            with open(path, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith("#") and "=" in line:
                        k, _, v = line.partition("=")
                        v = v.strip().strip('"').strip("'")
                        os.environ.setdefault(k.strip(), v)
            break


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer. Got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = _env_str(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number. Got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str = ""
    safety_intel_model: str = DEFAULT_SAFETY_INTEL_MODEL
    safety_intel_timeout: float = 25.0
    census_api_key: str = ""
    acs_current_year: int = DEFAULT_ACS_CURRENT_YEAR
    acs_baseline_year: int = DEFAULT_ACS_CURRENT_YEAR - ACS_BASELINE_OFFSET_YEARS
    http_timeout: float = 20.0
    http_retries: int = 3
    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"

    @property
    def growth_years(self) -> int:
        return self.acs_current_year - self.acs_baseline_year


def load_settings() -> Settings:
    _load_dotenv()

    current_year = _env_int("ACS_CURRENT_YEAR", DEFAULT_ACS_CURRENT_YEAR)
    baseline_year = _env_int("ACS_BASELINE_YEAR", current_year - ACS_BASELINE_OFFSET_YEARS)
    if baseline_year >= current_year:
        raise ValueError(
            f"ACS_BASELINE_YEAR ({baseline_year}) must be earlier than ACS_CURRENT_YEAR ({current_year})."
        )

    raw_origins = _env_str("CORS_ORIGINS", "*")
    origins = tuple(origin.strip() for origin in raw_origins.split(",") if origin.strip()) or ("*",)

    return Settings(
        gemini_api_key=_env_str("GEMINI_API_KEY"),
        safety_intel_model=_env_str("SAFETY_INTEL_MODEL", DEFAULT_SAFETY_INTEL_MODEL),
        safety_intel_timeout=_env_float("SAFETY_INTEL_TIMEOUT_SECONDS", 25.0),
        census_api_key=_env_str("CENSUS_API_KEY"),
        acs_current_year=current_year,
        acs_baseline_year=baseline_year,
        http_timeout=_env_float("HTTP_TIMEOUT_SECONDS", 20.0),
        http_retries=_env_int("HTTP_RETRIES", 3),
        cors_origins=origins,
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
    )
