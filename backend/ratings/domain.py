from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ratings.errors import DateParseError

OVERALL = "overall"
GAME = "game"


@dataclass(frozen=True)
class RatingScope:
    """An independent rating partition: overall, or a single game."""

    scope_type: str
    scope_id: str | None = None

    def __post_init__(self) -> None:
        if self.scope_type not in (OVERALL, GAME):
            raise ValueError(f"Unknown scope type: {self.scope_type!r}")
        if self.scope_type == OVERALL and self.scope_id is not None:
            raise ValueError("Overall scope takes no scope_id")
        if self.scope_type == GAME and not self.scope_id:
            raise ValueError("Game scope requires a game id")

    @classmethod
    def overall(cls) -> RatingScope:
        return cls(OVERALL)

    @classmethod
    def game(cls, game_id: str) -> RatingScope:
        return cls(GAME, game_id)

    @classmethod
    def parse(cls, value: str) -> RatingScope:
        """Parse ``overall`` or ``game:<id>``."""
        text = value.strip()
        if text.lower() == OVERALL:
            return cls.overall()
        prefix, sep, game_id = text.partition(":")
        if sep and prefix.lower() == GAME and game_id:
            return cls.game(game_id)
        raise ValueError(f"Invalid scope: {value!r}")

    @property
    def is_overall(self) -> bool:
        return self.scope_type == OVERALL

    def __str__(self) -> str:
        if self.is_overall:
            return OVERALL
        return f"{GAME}:{self.scope_id}"


@dataclass(frozen=True, order=True)
class Period:
    """A calendar month, in UTC."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise DateParseError(f"Invalid month: {self.month}")

    @classmethod
    def parse(cls, value: str) -> Period:
        parts = value.strip().split("-")
        if len(parts) != 2:
            raise DateParseError(f"Invalid period: {value!r}, expected YYYY-MM")
        try:
            year, month = int(parts[0]), int(parts[1])
        except ValueError:
            raise DateParseError(f"Invalid period: {value!r}, expected YYYY-MM")
        return cls(year, month)

    @classmethod
    def containing(cls, timestamp: datetime) -> Period:
        return cls(timestamp.year, timestamp.month)

    def next(self) -> Period:
        if self.month == 12:
            return Period(self.year + 1, 1)
        return Period(self.year, self.month + 1)

    def previous(self) -> Period:
        if self.month == 1:
            return Period(self.year - 1, 12)
        return Period(self.year, self.month - 1)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass
class PlayerRating:
    """Latest rating snapshot for a (player, scope) pair."""

    player_id: str
    scope: RatingScope
    rating: float
    rd: float
    vol: float
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    last_period_end: datetime | None = None


@dataclass
class RatingHistoryPoint:
    """Rating of a player at the close of one period."""

    player_id: str
    scope: RatingScope
    period_end: datetime
    rating: float
    rd: float
    vol: float
    period_games: int = 0
    period_wins: int = 0
    period_losses: int = 0
    games_played: int = 0
    wins: int = 0
    losses: int = 0


@dataclass(frozen=True)
class Participant:
    player_id: str
    placement: int | None


@dataclass(frozen=True)
class ContestOutcome:
    contest_id: str
    start: datetime
    game_id: str | None
    participants: tuple[Participant, ...] = field(default_factory=tuple)
