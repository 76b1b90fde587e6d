"""Calendar-month rating periods and pairwise aggregation of contests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Iterator, Mapping

from ratings.domain import ContestOutcome, Period, RatingScope
from ratings.errors import DateParseError
from ratings.glicko import DRAW, LOSS, WIN, OpponentResult, RatingState


def _coerce_datetime(timestamp: datetime | str) -> datetime:
    if isinstance(timestamp, datetime):
        return timestamp
    if isinstance(timestamp, str):
        try:
            return datetime.fromisoformat(timestamp.strip().replace("Z", "+00:00"))
        except ValueError:
            raise DateParseError(f"Unparsable timestamp: {timestamp!r}")
    raise DateParseError(f"Unsupported timestamp type: {type(timestamp)}")


def as_utc(timestamp: datetime | str) -> datetime:
    dt = _coerce_datetime(timestamp)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def period_start(period: Period) -> datetime:
    return datetime(period.year, period.month, 1, tzinfo=timezone.utc)


def period_end(period: Period) -> datetime:
    """Exclusive end of the period: the first instant of the next month."""
    return period_start(period.next())


def period_window(period: Period) -> tuple[datetime, datetime]:
    return period_start(period), period_end(period)


def months_between(earlier: datetime, later: datetime) -> int:
    earlier, later = as_utc(earlier), as_utc(later)
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def iter_periods(first: Period, last: Period) -> Iterator[Period]:
    """Yield every period from first to last, both inclusive, in order."""
    current = first
    while current <= last:
        yield current
        current = current.next()


def in_scope(contest: ContestOutcome, scope: RatingScope) -> bool:
    if scope.is_overall:
        return True
    return contest.game_id == scope.scope_id


def pairwise_score(placement: int | None, opponent_placement: int | None) -> float:
    """Lower placement beats higher; equal or unknown placements tie."""
    if placement is None or opponent_placement is None:
        return DRAW
    if placement < opponent_placement:
        return WIN
    if placement > opponent_placement:
        return LOSS
    return DRAW


@dataclass
class PlayerActivity:
    """Everything one player did in one scope during one period."""

    results: list[OpponentResult] = field(default_factory=list)
    games: int = 0
    wins: int = 0
    losses: int = 0


def aggregate_period(
    contests: Iterable[ContestOutcome],
    scope: RatingScope,
    period: Period,
    opponent_states: Mapping[str, RatingState],
    default: RatingState,
) -> dict[str, PlayerActivity]:
    """Turn one period's contests into per-player pairwise results.

    Args:
        contests: Candidate contests; those outside the period window or the
            scope are ignored.
        scope: Scope being rated.
        period: Period being rated.
        opponent_states: Ratings as of the start of the period, by player id.
        default: State used for opponents not yet rated in this scope.

    Returns:
        Activity keyed by player id. Players absent from every contest are
        not present.
    """
    start, end = period_window(period)
    activity: dict[str, PlayerActivity] = {}

    for contest in contests:
        if not in_scope(contest, scope):
            continue
        if not start <= as_utc(contest.start) < end:
            continue
        participants = contest.participants
        if len(participants) < 2:
            continue

        for participant in participants:
            player = activity.setdefault(participant.player_id, PlayerActivity())
            player.games += 1
            if participant.placement == 1:
                player.wins += 1
            elif participant.placement is not None:
                player.losses += 1

            for opponent in participants:
                if opponent.player_id == participant.player_id:
                    continue
                opp_state = opponent_states.get(opponent.player_id, default)
                player.results.append(
                    OpponentResult(
                        opp_rating=opp_state.rating,
                        opp_rd=opp_state.rd,
                        score=pairwise_score(participant.placement, opponent.placement),
                    )
                )

    return activity
