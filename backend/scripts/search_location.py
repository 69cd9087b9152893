"""Resolve a location query (or a coordinate pair) from the command line.

Usage (from backend/):
    python -m scripts.search_location "Hà Nội" --country VN --limit 5
    python -m scripts.search_location --reverse 21.0285 105.8542
    python -m scripts.search_location --bulk "Hội An" "Paris" "Tokyo"
    python -m scripts.search_location --suggest "da"
    python -m scripts.search_location --nearby 10.7769 106.7009 --category restaurants --radius 2
    python -m scripts.search_location --provinces

Prints the JSON response. Provider keys and limits come from backend/.env.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from db import init_db
from domain.errors import LocationServiceError
from domain.models import SearchStrategy
from services.location_search import build_default_service

logger = logging.getLogger("search_location")


async def _run(args: argparse.Namespace) -> dict:
    service = build_default_service()
    if args.reverse:
        lat, lng = args.reverse
        return (await service.reverse_geocode(lat, lng, args.zoom)).to_dict()
    if args.nearby:
        lat, lng = args.nearby
        places = await service.find_nearby_places(lat, lng, args.category, args.radius, args.limit)
        return {"places": [p.to_dict() for p in places]}
    if args.provinces:
        return {"provinces": [p.to_dict() for p in await service.list_provinces()]}
    if args.suggest:
        return {"suggestions": await service.suggestions(args.suggest, args.limit)}
    if args.bulk:
        options = {
            "user_country": args.country,
            "strategy": args.strategy,
            "limit_per_query": args.limit,
            "exclude_cache": args.no_cache,
        }
        return (await service.bulk_search(args.queries, options)).to_dict()
    if len(args.queries) != 1:
        raise SystemExit("exactly one query is required (use --bulk for several)")
    request = {
        "query": args.queries[0],
        "user_country": args.country,
        "strategy": args.strategy,
        "limit": args.limit,
        "exclude_cache": args.no_cache,
    }
    return (await service.search(request)).to_dict()


def main() -> int:
    parser = argparse.ArgumentParser(description="Search locations via local data, Goong and Nominatim.")
    parser.add_argument("queries", nargs="*", help="Free-text query (several with --bulk).")
    parser.add_argument("--country", default=None, help="User country hint, e.g. VN.")
    parser.add_argument("--strategy", choices=[s.value for s in SearchStrategy], default=SearchStrategy.AUTO.value)
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--no-cache", action="store_true", help="Bypass the search cache.")
    parser.add_argument("--bulk", action="store_true", help="Treat all positional arguments as one batch.")
    parser.add_argument("--reverse", nargs=2, type=float, metavar=("LAT", "LNG"), help="Reverse geocode a point.")
    parser.add_argument("--zoom", type=int, default=None, help="Reverse geocode detail level (0-18).")
    parser.add_argument("--suggest", default=None, help="Print name suggestions for a partial query.")
    parser.add_argument("--nearby", nargs=2, type=float, metavar=("LAT", "LNG"), help="Find places around a point.")
    parser.add_argument("--category", default="all", help="Nearby category, e.g. restaurants, hotels.")
    parser.add_argument("--radius", type=float, default=5.0, help="Nearby search radius in km.")
    parser.add_argument("--provinces", action="store_true", help="List provinces from the local dataset.")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    init_db()
    try:
        payload = asyncio.run(_run(args))
    except LocationServiceError as exc:
        logger.error("%s: %s", type(exc).__name__, exc.message)
        return 1
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
