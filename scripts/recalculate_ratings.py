#!/usr/bin/env python3
"""
Recalculate Glicko-2 ratings from the command line.

Runs synchronously against DATABASE_URL, bypassing the API scheduler. Do not
run this while the service is recalculating: the two are not coordinated.

Usage:
    python scripts/recalculate_ratings.py --period 2024-03
    python scripts/recalculate_ratings.py --period 2024-03 --scope game:catan
    python scripts/recalculate_ratings.py --historical
"""
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

# ---------------------------------------------------------------------------
# Path setup: allow importing backend packages
# ---------------------------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "backend"))

from ratings.config import load_settings  # noqa: E402
from ratings.domain import Period, RatingScope  # noqa: E402
from ratings.errors import RatingError  # noqa: E402
from ratings.glicko import Glicko2Params  # noqa: E402
from ratings.main import open_orchestrator  # noqa: E402
from ratings.orchestrator import PeriodSummary  # noqa: E402

logger = logging.getLogger("recalculate_ratings")


def print_summary(summaries: list[PeriodSummary], elapsed: float) -> None:
    print()
    print(f"{'Period':<9} {'Scope':<24} {'Contests':>8} {'Updated':>8} {'Skipped':>8}")
    print("-" * 61)
    for s in summaries:
        if s.contests == 0 and s.players_updated == 0:
            continue
        print(f"{str(s.period):<9} {str(s.scope):<24} {s.contests:>8} {s.players_updated:>8} {s.players_skipped:>8}")
    print("-" * 61)
    print(f"{len(summaries)} scope-periods in {elapsed:.1f}s")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Recalculate Glicko-2 ratings for one month or the whole history",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--period", type=str,
        help="Month to recalculate, YYYY-MM",
    )
    target.add_argument(
        "--historical", action="store_true",
        help="Clear every rating and replay all months from the first contest",
    )
    parser.add_argument(
        "--scope", type=str, default=None,
        help="Limit --period to one scope: 'overall' or 'game:<id>' (default: all scopes)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.scope and not args.period:
        parser.error("--scope can only be used with --period")

    settings = load_settings()
    params = Glicko2Params(
        tau=settings.tau,
        epsilon=settings.epsilon,
        max_iterations=settings.max_iterations,
    )

    started = time.monotonic()
    try:
        with open_orchestrator(params) as orchestrator:
            if args.historical:
                summaries = orchestrator.recalculate_all_historical()
            else:
                period = Period.parse(args.period)
                if args.scope:
                    scope = RatingScope.parse(args.scope)
                    summaries = [orchestrator.recalculate_period(scope, period.year, period.month)]
                else:
                    summaries = orchestrator.recalculate_month(period.year, period.month)
    except (RatingError, ValueError) as exc:
        logger.error(f"Recalculation failed: {exc}")
        sys.exit(1)

    print_summary(summaries, time.monotonic() - started)


if __name__ == "__main__":
    main()
