"""Persistence for latest ratings and rating history.

``rating_latest`` holds at most one row per (player, scope); ``rating_history``
holds at most one row per (player, scope, period_end). Both are written with
insert-or-replace semantics on those keys.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Iterator

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ratings.domain import PlayerRating, RatingHistoryPoint, RatingScope
from ratings.errors import DateParseError, StoreError
from ratings.models import Contest, RatingHistory, RatingLatest
from ratings.periods import as_utc

logger = logging.getLogger(__name__)


def leaderboard_sort_key(rating: PlayerRating) -> tuple[float, int, str]:
    # rating desc, games_played desc, player_id asc
    return (-rating.rating, -rating.games_played, rating.player_id)


class RatingStore(ABC):
    @abstractmethod
    def get_latest(self, scope: RatingScope, player_id: str) -> PlayerRating | None: ...

    @abstractmethod
    def get_all_latest(self, scope: RatingScope) -> list[PlayerRating]:
        """Every latest rating in a scope, by player id."""

    @abstractmethod
    def get_player_ratings(self, player_id: str) -> list[PlayerRating]:
        """Latest ratings of one player across all scopes."""

    @abstractmethod
    def upsert_latest(self, rating: PlayerRating) -> None: ...

    @abstractmethod
    def append_history(self, point: RatingHistoryPoint) -> None:
        """Insert a history point, replacing any point with the same period_end."""

    @abstractmethod
    def get_history(self, player_id: str, scope: RatingScope, limit: int) -> list[RatingHistoryPoint]:
        """History points, newest period_end first."""

    @abstractmethod
    def get_history_before(
        self, player_id: str, scope: RatingScope, period_end: datetime
    ) -> RatingHistoryPoint | None:
        """Newest history point with a period_end strictly before the given one."""

    @abstractmethod
    def get_leaderboard(self, scope: RatingScope, min_games: int, limit: int) -> list[PlayerRating]: ...

    @abstractmethod
    def get_earliest_contest_date(self) -> datetime | str | None:
        """Start of the oldest contest, as stored; None when there are no contests."""

    @abstractmethod
    def clear_all(self) -> None:
        """Delete every latest and history row. Only for full historical recompute."""

    @abstractmethod
    def commit(self) -> None:
        """Make every write so far durable."""


def _scope_filter(query: Query, model, scope: RatingScope) -> Query:
    query = query.filter(model.scope_type == scope.scope_type)
    if scope.scope_id is None:
        return query.filter(model.scope_id.is_(None))
    return query.filter(model.scope_id == scope.scope_id)


def _to_player_rating(row: RatingLatest) -> PlayerRating:
    return PlayerRating(
        player_id=row.player_id,
        scope=RatingScope(row.scope_type, row.scope_id),
        rating=row.rating,
        rd=row.rd,
        vol=row.volatility,
        games_played=row.games_played,
        wins=row.wins,
        losses=row.losses,
        last_period_end=as_utc(row.last_period_end) if row.last_period_end is not None else None,
    )


def _to_history_point(row: RatingHistory) -> RatingHistoryPoint:
    return RatingHistoryPoint(
        player_id=row.player_id,
        scope=RatingScope(row.scope_type, row.scope_id),
        period_end=as_utc(row.period_end),
        rating=row.rating,
        rd=row.rd,
        vol=row.volatility,
        period_games=row.period_games,
        period_wins=row.period_wins,
        period_losses=row.period_losses,
        games_played=row.games_played,
        wins=row.wins,
        losses=row.losses,
    )


class SqlRatingStore(RatingStore):
    """RatingStore on a SQLAlchemy session.

    Writes are flushed immediately so later reads in the same session observe
    them; nothing is durable until ``commit``.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Rating store failed to {action}: {exc}")
            raise StoreError(f"Failed to {action}: {exc}") from exc

    def _latest_row(self, scope: RatingScope, player_id: str) -> RatingLatest | None:
        query = self.db.query(RatingLatest).filter(RatingLatest.player_id == player_id)
        return _scope_filter(query, RatingLatest, scope).first()

    def get_latest(self, scope: RatingScope, player_id: str) -> PlayerRating | None:
        with self._guard("load latest rating"):
            row = self._latest_row(scope, player_id)
        return _to_player_rating(row) if row is not None else None

    def get_all_latest(self, scope: RatingScope) -> list[PlayerRating]:
        with self._guard("load latest ratings"):
            rows = (
                _scope_filter(self.db.query(RatingLatest), RatingLatest, scope)
                .order_by(RatingLatest.player_id.asc())
                .all()
            )
        return [_to_player_rating(row) for row in rows]

    def get_player_ratings(self, player_id: str) -> list[PlayerRating]:
        with self._guard("load player ratings"):
            rows = (
                self.db.query(RatingLatest)
                .filter(RatingLatest.player_id == player_id)
                .order_by(RatingLatest.scope_type.desc(), RatingLatest.scope_id.asc())
                .all()
            )
        return [_to_player_rating(row) for row in rows]

    def upsert_latest(self, rating: PlayerRating) -> None:
        with self._guard("upsert latest rating"):
            row = self._latest_row(rating.scope, rating.player_id)
            if row is None:
                row = RatingLatest(
                    player_id=rating.player_id,
                    scope_type=rating.scope.scope_type,
                    scope_id=rating.scope.scope_id,
                )
                self.db.add(row)
            row.rating = rating.rating
            row.rd = rating.rd
            row.volatility = rating.vol
            row.games_played = rating.games_played
            row.wins = rating.wins
            row.losses = rating.losses
            row.last_period_end = rating.last_period_end
            self.db.flush()

    def append_history(self, point: RatingHistoryPoint) -> None:
        with self._guard("write rating history"):
            query = self.db.query(RatingHistory).filter(
                RatingHistory.player_id == point.player_id,
                RatingHistory.period_end == point.period_end,
            )
            row = _scope_filter(query, RatingHistory, point.scope).first()
            if row is None:
                row = RatingHistory(
                    player_id=point.player_id,
                    scope_type=point.scope.scope_type,
                    scope_id=point.scope.scope_id,
                    period_end=point.period_end,
                )
                self.db.add(row)
            row.rating = point.rating
            row.rd = point.rd
            row.volatility = point.vol
            row.period_games = point.period_games
            row.period_wins = point.period_wins
            row.period_losses = point.period_losses
            row.games_played = point.games_played
            row.wins = point.wins
            row.losses = point.losses
            self.db.flush()

    def get_history(self, player_id: str, scope: RatingScope, limit: int) -> list[RatingHistoryPoint]:
        with self._guard("load rating history"):
            query = self.db.query(RatingHistory).filter(RatingHistory.player_id == player_id)
            rows = (
                _scope_filter(query, RatingHistory, scope)
                .order_by(RatingHistory.period_end.desc())
                .limit(limit)
                .all()
            )
        return [_to_history_point(row) for row in rows]

    def get_history_before(
        self, player_id: str, scope: RatingScope, period_end: datetime
    ) -> RatingHistoryPoint | None:
        with self._guard("load rating history"):
            query = self.db.query(RatingHistory).filter(
                RatingHistory.player_id == player_id,
                RatingHistory.period_end < period_end,
            )
            row = (
                _scope_filter(query, RatingHistory, scope)
                .order_by(RatingHistory.period_end.desc())
                .first()
            )
        return _to_history_point(row) if row is not None else None

    def get_leaderboard(self, scope: RatingScope, min_games: int, limit: int) -> list[PlayerRating]:
        with self._guard("load leaderboard"):
            rows = (
                _scope_filter(self.db.query(RatingLatest), RatingLatest, scope)
                .filter(RatingLatest.games_played >= min_games)
                .order_by(
                    RatingLatest.rating.desc(),
                    RatingLatest.games_played.desc(),
                    RatingLatest.player_id.asc(),
                )
                .limit(limit)
                .all()
            )
        return [_to_player_rating(row) for row in rows]

    def get_earliest_contest_date(self) -> datetime | str | None:
        with self._guard("load earliest contest date"):
            try:
                return self.db.query(func.min(Contest.start)).scalar()
            except ValueError as exc:
                # raised by the driver's result processor for malformed values
                raise DateParseError(f"Unparsable earliest contest date: {exc}") from exc

    def clear_all(self) -> None:
        with self._guard("clear ratings"):
            history_count = self.db.query(RatingHistory).delete(synchronize_session=False)
            latest_count = self.db.query(RatingLatest).delete(synchronize_session=False)
            self.db.commit()
        logger.info(f"Cleared {latest_count} latest ratings and {history_count} history points")

    def commit(self) -> None:
        with self._guard("commit ratings"):
            self.db.commit()


class InMemoryRatingStore(RatingStore):
    """Dict-backed RatingStore for embedded use and tests."""

    def __init__(self, earliest_contest_date: datetime | str | None = None) -> None:
        self.earliest_contest_date = earliest_contest_date
        self._latest: dict[tuple[str, RatingScope], PlayerRating] = {}
        self._history: dict[tuple[str, RatingScope, datetime], RatingHistoryPoint] = {}
        self.commits = 0

    def get_latest(self, scope: RatingScope, player_id: str) -> PlayerRating | None:
        rating = self._latest.get((player_id, scope))
        return replace(rating) if rating is not None else None

    def get_all_latest(self, scope: RatingScope) -> list[PlayerRating]:
        ratings = [replace(r) for (_, s), r in self._latest.items() if s == scope]
        return sorted(ratings, key=lambda r: r.player_id)

    def get_player_ratings(self, player_id: str) -> list[PlayerRating]:
        return [replace(r) for (p, _), r in self._latest.items() if p == player_id]

    def upsert_latest(self, rating: PlayerRating) -> None:
        self._latest[(rating.player_id, rating.scope)] = replace(rating)

    def append_history(self, point: RatingHistoryPoint) -> None:
        self._history[(point.player_id, point.scope, point.period_end)] = replace(point)

    def _points(self, player_id: str, scope: RatingScope) -> list[RatingHistoryPoint]:
        points = [
            point
            for (p, s, _), point in self._history.items()
            if p == player_id and s == scope
        ]
        return sorted(points, key=lambda point: point.period_end, reverse=True)

    def get_history(self, player_id: str, scope: RatingScope, limit: int) -> list[RatingHistoryPoint]:
        return [replace(point) for point in self._points(player_id, scope)[:limit]]

    def get_history_before(
        self, player_id: str, scope: RatingScope, period_end: datetime
    ) -> RatingHistoryPoint | None:
        for point in self._points(player_id, scope):
            if point.period_end < period_end:
                return replace(point)
        return None

    def get_leaderboard(self, scope: RatingScope, min_games: int, limit: int) -> list[PlayerRating]:
        eligible = [r for r in self.get_all_latest(scope) if r.games_played >= min_games]
        return sorted(eligible, key=leaderboard_sort_key)[:limit]

    def get_earliest_contest_date(self) -> datetime | str | None:
        return self.earliest_contest_date

    def clear_all(self) -> None:
        self._latest.clear()
        self._history.clear()

    def commit(self) -> None:
        self.commits += 1
