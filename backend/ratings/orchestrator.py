"""Chronological replay of contest history into Glicko-2 ratings.

A period's input ratings are the previous period's output, so periods are
always processed oldest first and each one is committed before the next
begins.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone

from ratings.contests import ContestSource
from ratings.domain import ContestOutcome, Period, PlayerRating, RatingHistoryPoint, RatingScope
from ratings.errors import NumericDivergence
from ratings.glicko import Glicko2Params, RatingState, default_state, update_rating
from ratings.periods import aggregate_period, as_utc, in_scope, iter_periods, months_between, period_window
from ratings.store import RatingStore

logger = logging.getLogger(__name__)


@dataclass
class PeriodSummary:
    scope: RatingScope
    period: Period
    contests: int = 0
    players_updated: int = 0
    players_skipped: int = 0


@dataclass(frozen=True)
class _Prior:
    """A player's state at the start of a period."""

    state: RatingState
    games_played: int
    wins: int
    losses: int
    last_period_end: datetime | None


def _prior_from_latest(latest: PlayerRating) -> _Prior:
    return _Prior(
        state=RatingState(latest.rating, latest.rd, latest.vol),
        games_played=latest.games_played,
        wins=latest.wins,
        losses=latest.losses,
        last_period_end=latest.last_period_end,
    )


def _prior_from_history(point: RatingHistoryPoint) -> _Prior:
    return _Prior(
        state=RatingState(point.rating, point.rd, point.vol),
        games_played=point.games_played,
        wins=point.wins,
        losses=point.losses,
        last_period_end=point.period_end,
    )


class RecalculationOrchestrator:
    def __init__(
        self,
        store: RatingStore,
        contests: ContestSource,
        params: Glicko2Params | None = None,
    ) -> None:
        self.store = store
        self.contests = contests
        self.params = (params or Glicko2Params()).validate()

    def recalculate_period(self, scope: RatingScope, year: int, month: int) -> PeriodSummary:
        """Rate one scope over one calendar month and commit the result.

        Re-running a period replaces its rows instead of adding new ones.

        Raises:
            DateParseError: If the month is invalid.
            StoreError: If reading or persisting fails; nothing more is written.
        """
        period = Period(year, month)
        start, end = period_window(period)
        contests = self.contests.get_contests_in_period(start, end)
        return self._recalculate(scope, period, contests)

    def recalculate_month(self, year: int, month: int) -> list[PeriodSummary]:
        """Rate one month for the overall scope and every known game."""
        period = Period(year, month)
        start, end = period_window(period)
        contests = self.contests.get_contests_in_period(start, end)
        return [self._recalculate(scope, period, contests) for scope in self.known_scopes()]

    def known_scopes(self) -> list[RatingScope]:
        return [RatingScope.overall()] + [
            RatingScope.game(game_id) for game_id in self.contests.get_distinct_game_ids()
        ]

    def recalculate_all_historical(self, now: datetime | None = None) -> list[PeriodSummary]:
        """Clear all ratings and replay every month from the first contest to now.

        Raises:
            DateParseError: If the earliest contest date is unparsable. Raised
                before anything is cleared.
            StoreError: If any period fails to persist. Periods already
                committed stay committed; re-run the whole replay to recover.
        """
        started = time.monotonic()
        now = as_utc(now or datetime.now(timezone.utc))

        raw_earliest = self.store.get_earliest_contest_date()
        if raw_earliest is None:
            logger.info("No contests found; clearing all ratings")
            self.store.clear_all()
            return []

        earliest = as_utc(raw_earliest)
        scopes = self.known_scopes()
        first, last = Period.containing(earliest), Period.containing(now)
        logger.info(
            f"Starting historical ratings recalculation from {first} to {last} "
            f"across {len(scopes)} scopes"
        )

        self.store.clear_all()

        summaries: list[PeriodSummary] = []
        for period in iter_periods(first, last):
            start, end = period_window(period)
            contests = self.contests.get_contests_in_period(start, end)
            for scope in scopes:
                summaries.append(self._recalculate(scope, period, contests))

        logger.info(
            f"Historical ratings recalculation finished: {len(summaries)} scope-periods "
            f"in {time.monotonic() - started:.1f}s"
        )
        return summaries

    def _resolve_prior(
        self,
        scope: RatingScope,
        player_id: str,
        latest: PlayerRating | None,
        end: datetime,
    ) -> _Prior | None:
        if latest is None:
            return None
        if latest.last_period_end is None or latest.last_period_end < end:
            return _prior_from_latest(latest)
        # This period or a later one was already processed: rewind to the
        # state at the start of this period.
        point = self.store.get_history_before(player_id, scope, end)
        return _prior_from_history(point) if point is not None else None

    def _recalculate(
        self,
        scope: RatingScope,
        period: Period,
        contests: list[ContestOutcome],
    ) -> PeriodSummary:
        _, end = period_window(period)
        scoped = [c for c in contests if in_scope(c, scope)]
        summary = PeriodSummary(scope=scope, period=period, contests=len(scoped))

        latest_by_player = {r.player_id: r for r in self.store.get_all_latest(scope)}
        candidates = set(latest_by_player)
        for contest in scoped:
            candidates.update(p.player_id for p in contest.participants)

        priors: dict[str, _Prior] = {}
        for player_id in candidates:
            prior = self._resolve_prior(scope, player_id, latest_by_player.get(player_id), end)
            if prior is not None:
                priors[player_id] = prior

        default = default_state(self.params)
        activity = aggregate_period(
            scoped,
            scope,
            period,
            {player_id: prior.state for player_id, prior in priors.items()},
            default,
        )

        stale_latest = 0
        for player_id in sorted(candidates):
            played = activity.get(player_id)
            prior = priors.get(player_id)
            if played is None and prior is None:
                continue

            elapsed = 1
            if prior is not None and prior.last_period_end is not None:
                elapsed = max(months_between(prior.last_period_end, end), 1)

            try:
                updated = update_rating(
                    prior.state if prior is not None else default,
                    played.results if played is not None else [],
                    self.params,
                    elapsed_periods=elapsed,
                )
            except NumericDivergence as exc:
                logger.warning(f"Skipping {player_id} in {scope} for {period}: {exc}")
                summary.players_skipped += 1
                continue

            period_games = played.games if played is not None else 0
            period_wins = played.wins if played is not None else 0
            period_losses = played.losses if played is not None else 0
            games_played = (prior.games_played if prior is not None else 0) + period_games
            wins = (prior.wins if prior is not None else 0) + period_wins
            losses = (prior.losses if prior is not None else 0) + period_losses

            self.store.append_history(
                RatingHistoryPoint(
                    player_id=player_id,
                    scope=scope,
                    period_end=end,
                    rating=updated.rating,
                    rd=updated.rd,
                    vol=updated.vol,
                    period_games=period_games,
                    period_wins=period_wins,
                    period_losses=period_losses,
                    games_played=games_played,
                    wins=wins,
                    losses=losses,
                )
            )

            latest = latest_by_player.get(player_id)
            if latest is not None and latest.last_period_end is not None and latest.last_period_end > end:
                stale_latest += 1
            else:
                self.store.upsert_latest(
                    PlayerRating(
                        player_id=player_id,
                        scope=scope,
                        rating=updated.rating,
                        rd=updated.rd,
                        vol=updated.vol,
                        games_played=games_played,
                        wins=wins,
                        losses=losses,
                        last_period_end=end,
                    )
                )
            summary.players_updated += 1

        self.store.commit()

        if stale_latest:
            logger.warning(
                f"Re-ran {period} for {scope} after later periods were committed; "
                f"{stale_latest} latest ratings left as-is, run a historical recalculation to rebuild them"
            )
        logger.info(
            f"Recalculated {scope} for {period}: {summary.contests} contests, "
            f"{summary.players_updated} players updated, {summary.players_skipped} skipped"
        )
        return summary
