"""Read-only access to contest outcomes owned by the contest service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ratings.domain import ContestOutcome, Participant
from ratings.errors import StoreError
from ratings.models import Contest, ContestResult


class ContestSource(ABC):
    @abstractmethod
    def get_contests_in_period(self, start: datetime, end: datetime) -> list[ContestOutcome]:
        """Contests whose start falls in [start, end), oldest first."""

    @abstractmethod
    def get_distinct_game_ids(self) -> list[str]:
        """Every game id that appears on at least one contest, sorted."""


class SqlContestSource(ContestSource):
    def __init__(self, db: Session) -> None:
        self.db = db

    def get_contests_in_period(self, start: datetime, end: datetime) -> list[ContestOutcome]:
        try:
            contests = (
                self.db.query(Contest)
                .filter(Contest.start >= start, Contest.start < end)
                .order_by(Contest.start.asc(), Contest.id.asc())
                .all()
            )
            if not contests:
                return []

            contest_ids = [c.id for c in contests]
            result_rows = (
                self.db.query(ContestResult)
                .filter(ContestResult.contest_id.in_(contest_ids))
                .order_by(ContestResult.contest_id, ContestResult.player_id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load contests in [{start}, {end}): {exc}") from exc

        participants_by_contest: dict[str, list[Participant]] = defaultdict(list)
        for row in result_rows:
            participants_by_contest[row.contest_id].append(
                Participant(player_id=row.player_id, placement=row.place)
            )

        return [
            ContestOutcome(
                contest_id=c.id,
                start=c.start,
                game_id=c.game_id,
                participants=tuple(participants_by_contest.get(c.id, [])),
            )
            for c in contests
        ]

    def get_distinct_game_ids(self) -> list[str]:
        try:
            rows = (
                self.db.query(Contest.game_id)
                .filter(Contest.game_id.isnot(None))
                .distinct()
                .order_by(Contest.game_id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load game ids: {exc}") from exc
        return [row[0] for row in rows]


class InMemoryContestSource(ContestSource):
    def __init__(self, contests: list[ContestOutcome] | None = None) -> None:
        self.contests: list[ContestOutcome] = list(contests or [])

    def get_contests_in_period(self, start: datetime, end: datetime) -> list[ContestOutcome]:
        selected = [c for c in self.contests if start <= c.start < end]
        return sorted(selected, key=lambda c: (c.start, c.contest_id))

    def get_distinct_game_ids(self) -> list[str]:
        return sorted({c.game_id for c in self.contests if c.game_id is not None})
