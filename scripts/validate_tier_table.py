"""Validate a ranking tier table (and optionally a badge table) before deploying it."""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Sequence

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from engines.ranking import resolve_tier
from ranking_tiers import (
    DEFAULT_TIERS_PATH,
    BadgeConfigError,
    BadgeRegistry,
    TierTable,
    TierTableConfigError,
)
from schemas import COURSE_POINT_CEILING


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--tiers",
        default=os.getenv("RANKING_TIERS_PATH") or str(DEFAULT_TIERS_PATH),
        help="Tier table file (JSON or YAML).",
    )
    parser.add_argument(
        "--badges",
        default=None,
        help="Optional badge level file to validate as well.",
    )
    parser.add_argument(
        "--ceiling",
        type=int,
        default=COURSE_POINT_CEILING,
        help="Course point ceiling the last bounded tier should reach.",
    )
    parser.add_argument(
        "--resolve",
        type=int,
        action="append",
        default=[],
        metavar="POINTS",
        help="Print the tier a point total resolves to (repeatable).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the normalised table as JSON instead of text.",
    )
    return parser


def _print_table(table: TierTable) -> None:
    print(f"Tiers: {len(table)}")
    for tier in table:
        upper = "∞" if tier.max_points is None else str(tier.max_points)
        print(f"  {tier.rank}. {tier.name}: {tier.min_points}–{upper} ({tier.bucket}, {tier.icon})")


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    try:
        table = TierTable.from_path(args.tiers)
    except FileNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except TierTableConfigError as exc:
        print(f"Invalid tier table {args.tiers}: {exc}", file=sys.stderr)
        return 1

    failures = []
    top = table.highest()
    top_reach = top.max_points if top.max_points is not None else top.min_points
    if top_reach < args.ceiling:
        failures.append(
            f"Top tier {top.name!r} ends at {top_reach}, below the course ceiling of {args.ceiling}"
        )

    if args.badges:
        try:
            badges = BadgeRegistry(args.badges)
        except FileNotFoundError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        except BadgeConfigError as exc:
            failures.append(f"Invalid badge table {args.badges}: {exc}")
        else:
            if not args.json:
                print(f"Badges: {len(badges)}")
                for level in badges:
                    print(f"  {level.name}: {level.min_points}+")

    if args.json:
        print(json.dumps({"tiers": table.to_records()}, indent=2, ensure_ascii=False))
    else:
        _print_table(table)

    for points in args.resolve:
        print(f"{points} points -> {resolve_tier(points, table).name}")

    for message in failures:
        print(message, file=sys.stderr)
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
