#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import re
import sys
from pathlib import Path

from backend.app.census_service import LocationNotFoundError, UpstreamAPIError
from backend.app.config import Settings, load_settings
from backend.app.radius_aggregator import round_half_up
from backend.app.schemas import SiteAnalysisQuery
from backend.app.site_analysis_service import AnalysisContext, analyze_site

EXIT_INVALID_ARGS = 2
EXIT_NOT_FOUND = 3
EXIT_UPSTREAM_FAILURE = 4

DEFAULT_RADII = [1.0, 3.0, 5.0]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Geocode an address and summarize ACS demographics for concentric radii "
            "using TIGERweb tracts and the Census ACS 5-year API."
        )
    )
    parser.add_argument("--address", type=str, required=True, help="Street address to analyze.")
    parser.add_argument(
        "--radius",
        dest="radii",
        type=float,
        action="append",
        default=None,
        help="Radius in miles; repeat for several bands (default: 1, 3, 5).",
    )
    parser.add_argument(
        "--current-year",
        type=int,
        default=None,
        help="Current ACS 5-year vintage (default: ACS_CURRENT_YEAR or 2022).",
    )
    parser.add_argument(
        "--baseline-year",
        type=int,
        default=None,
        help="Baseline ACS vintage for growth rates (default: current year - 5).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=20.0,
        help="HTTP timeout in seconds (default: 20).",
    )
    parser.add_argument(
        "--retries",
        type=int,
        default=3,
        help="Retry count for timeout/429/5xx failures (default: 3).",
    )
    parser.add_argument(
        "--no-safety",
        action="store_true",
        help="Skip the generated safety narrative.",
    )
    parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Output JSON file path. Defaults to scripts/out/site_<address>.json",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Pretty-print output JSON with indentation.",
    )
    return parser


def default_output_path(address: str) -> Path:
    slug = re.sub(r"[^a-z0-9]+", "_", address.lower()).strip("_")[:60] or "site"
    return Path("scripts/out") / f"site_{slug}.json"


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.timeout <= 0:
        parser.error("--timeout must be > 0.")
    if args.retries < 0:
        parser.error("--retries must be >= 0.")
    if args.radii and any(radius <= 0 for radius in args.radii):
        parser.error("--radius must be > 0.")
    if (
        args.current_year is not None
        and args.baseline_year is not None
        and args.baseline_year >= args.current_year
    ):
        parser.error("--baseline-year must be earlier than --current-year.")


def build_settings(args: argparse.Namespace) -> Settings:
    settings = load_settings()
    current_year = args.current_year or settings.acs_current_year
    if args.baseline_year is not None:
        baseline_year = args.baseline_year
    elif args.current_year is not None:
        baseline_year = current_year - (settings.acs_current_year - settings.acs_baseline_year)
    else:
        baseline_year = settings.acs_baseline_year
    if baseline_year >= current_year:
        raise ValueError(
            f"Baseline year {baseline_year} must be earlier than current year {current_year}."
        )
    return dataclasses.replace(
        settings,
        acs_current_year=current_year,
        acs_baseline_year=baseline_year,
        http_timeout=args.timeout,
        http_retries=args.retries,
    )


def _fmt_number(value: object) -> str:
    if isinstance(value, (int, float)):
        return f"{round_half_up(value):,}"
    return "N/A"


def _fmt_currency(value: object) -> str:
    if isinstance(value, (int, float)) and value > 0:
        return f"${round_half_up(value):,}"
    return "N/A"


def print_summary(result: dict[str, object], output_path: Path) -> None:
    site = result["site"]
    assert isinstance(site, dict)
    cards = result["cards"]
    assert isinstance(cards, list)
    tracts = result["tracts"]
    assert isinstance(tracts, dict)

    print(f"Saved: {output_path}")
    print(f"Site: {site.get('label')} ({site.get('lat')}, {site.get('lon')})")
    print(f"Tracts resolved: {tracts.get('resolved_count')} in counties {', '.join(tracts.get('counties') or [])}")
    print("")
    for card in cards:
        if not isinstance(card, dict):
            continue
        print(f"{card['radius_label']}:")
        print(f"- Population: {_fmt_number(card.get('population'))} (5-yr growth {card.get('population_growth_5yr')})")
        print(f"- Median household income: {_fmt_currency(card.get('income'))}")
        print(f"- Median home value: {_fmt_currency(card.get('home_value'))}")
        print(f"- Renter / owner: {card.get('rent_vs_own')}")
        print(f"- Vehicles per household: {card.get('vehicles_per_household')}")

    safety = result.get("safety")
    if isinstance(safety, dict):
        grades = safety.get("intel", {}).get("grades", {})
        print("")
        print(f"Safety ({safety.get('source')}): overall {grades.get('overall', 'N/A')}")

    errors = result.get("errors")
    if isinstance(errors, list) and errors:
        print("")
        print(f"Warnings ({len(errors)}):")
        for error in errors:
            if isinstance(error, dict):
                print(f"- [{error.get('stage')}] {error.get('message')}")


async def run_analysis(args: argparse.Namespace, settings: Settings) -> dict[str, object]:
    query = SiteAnalysisQuery(address=args.address, radii=args.radii or DEFAULT_RADII)

    async with AnalysisContext.from_settings(settings) as context:
        result = await analyze_site(
            context,
            query,
            settings=settings,
            include_safety=not args.no_safety,
        )

    result["output_path"] = str(args.out or default_output_path(args.address))
    return result


def write_output(payload: dict[str, object], output_path: Path, pretty: bool) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        if pretty:
            json.dump(payload, f, indent=2, ensure_ascii=True)
            f.write("\n")
        else:
            json.dump(payload, f, ensure_ascii=True)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    validate_args(parser, args)
    try:
        settings = build_settings(args)
    except ValueError as exc:
        parser.error(str(exc))

    output_path = args.out or default_output_path(args.address)

    try:
        result = asyncio.run(run_analysis(args, settings))
        write_output(result, output_path, pretty=args.pretty)
        print_summary(result, output_path)
        return 0
    except LocationNotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_NOT_FOUND
    except UpstreamAPIError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_UPSTREAM_FAILURE
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_INVALID_ARGS


if __name__ == "__main__":
    raise SystemExit(main())
