"""CLI jobs for schema setup, discovery, menu import, refresh and seeding."""

import argparse
import json
import logging
from dataclasses import asdict
from typing import List, Optional

from macrofit.core.config import get_settings
from macrofit.core.db import create_seed_job, ensure_schema
from macrofit.jobs.discovery import discover_places
from macrofit.jobs.menu_import import ServiceUnavailableError, import_brand_menu
from macrofit.jobs.refresh import refresh_brand_menus
from macrofit.jobs.seed import DEFAULT_SEED_RADIUS_KM, run_seed_job, select_metros

logger = logging.getLogger(__name__)


def _print(data: object) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    default_radius = get_settings().default_radius_km
    parser = argparse.ArgumentParser(prog="macrofit", description="Restaurant menu discovery and refresh jobs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create tables if they do not exist")

    discover_cmd = subparsers.add_parser("discover", help="Discover chain restaurants around a point")
    discover_cmd.add_argument("--lat", type=float, required=True)
    discover_cmd.add_argument("--lng", type=float, required=True)
    discover_cmd.add_argument("--radius-km", dest="radius_km", type=float, default=default_radius)
    discover_cmd.add_argument("--brand", dest="brands", action="append", default=[], help="Brand key (repeatable)")

    import_cmd = subparsers.add_parser("import", help="Import the menu of one brand")
    import_cmd.add_argument("brand_key")

    refresh_cmd = subparsers.add_parser("refresh", help="Re-import stale brands around a point")
    refresh_cmd.add_argument("--lat", type=float, required=True)
    refresh_cmd.add_argument("--lng", type=float, required=True)
    refresh_cmd.add_argument("--radius-km", dest="radius_km", type=float, default=default_radius)
    refresh_cmd.add_argument("--brand", dest="brands", action="append", default=[], help="Brand key (repeatable)")

    seed_cmd = subparsers.add_parser("seed", help="Seed metro areas in the foreground")
    seed_cmd.add_argument("--metro", dest="metros", action="append", default=[], help="Metro name (repeatable)")
    seed_cmd.add_argument("--radius-km", dest="radius_km", type=float, default=DEFAULT_SEED_RADIUS_KM)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        return _run(args)
    except ValueError as exc:
        logger.error("Invalid arguments: %s", exc)
        return 1


def _run(args: argparse.Namespace) -> int:
    if args.command == "init-db":
        ensure_schema()
    elif args.command == "discover":
        result = discover_places(args.lat, args.lng, args.radius_km, args.brands or None)
        _print(result.to_dict())
    elif args.command == "import":
        try:
            result = import_brand_menu(args.brand_key)
        except LookupError as exc:
            logger.error("%s", exc)
            return 1
        except ServiceUnavailableError as exc:
            logger.error("Nutrition sources unavailable: %s", exc)
            return 2
        _print(asdict(result))
    elif args.command == "refresh":
        _print(asdict(refresh_brand_menus(args.lat, args.lng, args.radius_km, args.brands or None)))
    elif args.command == "seed":
        metros = select_metros(args.metros)
        job_id = create_seed_job(
            total=len(metros),
            params={"metros": [metro.name for metro in metros], "radius_km": args.radius_km},
        )
        run_seed_job(job_id, metros, args.radius_km)
        _print({"job_id": job_id})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
