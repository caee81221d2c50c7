from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

import backend.app.census_service as cs

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "scripts"))
import site_analysis as sa  # noqa: E402


SITE_LAT = 43.0731
SITE_LON = -89.4012


def _acs_rows(year: int) -> list:
    population = "1200" if year == 2022 else "1000"
    return [
        [
            "B01003_001E",
            "B11001_001E",
            "B19013_001E",
            "B25077_001E",
            "B25035_001E",
            "B25010_001E",
            "B25003_001E",
            "B25003_002E",
            "B25003_003E",
            "B25046_001E",
            "state",
            "county",
            "tract",
        ],
        [population, "500", "64000", "280000", "1975", "2.40", "500", "300", "200", "900", "55", "025", "001704"],
    ]


async def fake_request_json(client, url, *, params, stage, config):  # type: ignore[no-untyped-def]
    if stage == "geocoder":
        return [{"lat": str(SITE_LAT), "lon": str(SITE_LON), "display_name": "Madison, Dane County, Wisconsin"}]
    if stage == "tracts":
        return {
            "features": [
                {
                    "attributes": {
                        "STATE": "55",
                        "COUNTY": "025",
                        "TRACT": "001704",
                        "INTPTLAT": f"+{SITE_LAT + 0.005:.7f}",
                        "INTPTLON": f"{SITE_LON:.7f}",
                    }
                }
            ]
        }
    if stage.startswith("acs:"):
        return _acs_rows(int(stage.split(":")[1]))
    raise AssertionError(f"Unexpected stage: {stage}")


@pytest.fixture(autouse=True)
def _env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("ACS_CURRENT_YEAR", "2022")
    monkeypatch.setenv("ACS_BASELINE_YEAR", "2017")


def test_default_output_path_slugifies_address() -> None:
    assert sa.default_output_path("2 E Main St, Madison, WI") == Path("scripts/out/site_2_e_main_st_madison_wi.json")


def test_cli_smoke_valid_run_writes_output(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(cs, "request_json", fake_request_json)
    out_file = tmp_path / "site.json"

    exit_code = sa.main(
        [
            "--address",
            "2 E Main St, Madison, WI",
            "--radius",
            "3",
            "--radius",
            "1",
            "--no-safety",
            "--pretty",
            "--out",
            str(out_file),
        ]
    )
    assert exit_code == 0
    assert out_file.exists()

    payload = json.loads(out_file.read_text(encoding="utf-8"))
    assert payload["input"]["radii"] == [1.0, 3.0]
    assert payload["safety"] is None
    assert payload["status"] == "complete"
    assert payload["summaries"][0]["population"] == 1200
    assert payload["summaries"][0]["population_growth_rate"] == pytest.approx(1.2 ** (1 / 5) - 1)

    stdout = capsys.readouterr().out
    assert "1 Mi:" in stdout
    assert "Population: 1,200" in stdout


def test_cli_year_override_shifts_baseline(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    seen_stages: list[str] = []

    async def recording_request_json(client, url, *, params, stage, config):  # type: ignore[no-untyped-def]
        seen_stages.append(stage)
        if stage.startswith("acs:"):
            return _acs_rows(2022)
        return await fake_request_json(client, url, params=params, stage=stage, config=config)

    monkeypatch.setattr(cs, "request_json", recording_request_json)
    exit_code = sa.main(
        ["--address", "2 E Main St, Madison, WI", "--current-year", "2023", "--no-safety", "--out", str(tmp_path / "o.json")]
    )
    assert exit_code == 0
    assert {stage for stage in seen_stages if stage.startswith("acs:")} == {"acs:2023:55025", "acs:2018:55025"}


def test_address_not_found_returns_exit_3(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    async def empty_geocoder(client, url, *, params, stage, config):  # type: ignore[no-untyped-def]
        assert stage == "geocoder"
        return []

    monkeypatch.setattr(cs, "request_json", empty_geocoder)
    out_file = tmp_path / "missing.json"
    exit_code = sa.main(["--address", "zzzz qqqq xxxx", "--no-safety", "--out", str(out_file)])
    assert exit_code == sa.EXIT_NOT_FOUND
    assert not out_file.exists()


def test_geocoder_outage_returns_exit_4(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    async def down(client, url, *, params, stage, config):  # type: ignore[no-untyped-def]
        raise cs.UpstreamAPIError(stage, "Network error after retries: connection refused")

    monkeypatch.setattr(cs, "request_json", down)
    exit_code = sa.main(["--address", "2 E Main St, Madison, WI", "--out", str(tmp_path / "o.json")])
    assert exit_code == sa.EXIT_UPSTREAM_FAILURE


def test_short_address_returns_exit_2(tmp_path: Path) -> None:
    exit_code = sa.main(["--address", "ab", "--no-safety", "--out", str(tmp_path / "o.json")])
    assert exit_code == sa.EXIT_INVALID_ARGS


@pytest.mark.parametrize(
    "argv",
    [
        ["--address", "2 E Main St", "--timeout", "0"],
        ["--address", "2 E Main St", "--radius", "-1"],
        ["--address", "2 E Main St", "--current-year", "2020", "--baseline-year", "2021"],
    ],
)
def test_invalid_arguments_rejected(argv: list[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        sa.main(argv)
    assert exc.value.code == 2


def test_baseline_not_before_default_current_year_rejected_before_io(monkeypatch: pytest.MonkeyPatch) -> None:
    async def no_network(client, url, *, params, stage, config):  # type: ignore[no-untyped-def]
        raise AssertionError(f"Unexpected request: {stage}")

    monkeypatch.setattr(cs, "request_json", no_network)
    with pytest.raises(SystemExit) as exc:
        sa.main(["--address", "2 E Main St, Madison, WI", "--baseline-year", "2023", "--no-safety"])
    assert exc.value.code == 2


def test_build_settings_rejects_inverted_years() -> None:
    args = sa.build_parser().parse_args(["--address", "2 E Main St", "--baseline-year", "2022"])
    with pytest.raises(ValueError, match="must be earlier"):
        sa.build_settings(args)
