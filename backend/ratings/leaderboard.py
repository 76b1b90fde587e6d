from __future__ import annotations

from dataclasses import dataclass

from ratings.domain import PlayerRating, RatingHistoryPoint, RatingScope
from ratings.store import RatingStore

DEFAULT_MIN_GAMES = 10
DEFAULT_LIMIT = 50
DEFAULT_HISTORY_LIMIT = 24


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    rating: PlayerRating


class LeaderboardService:
    """Read-only ranked views over a RatingStore.

    Reads never wait on a running recalculation; during one they may see a
    mix of old and new rows.
    """

    def __init__(self, store: RatingStore) -> None:
        self.store = store

    def get_leaderboard(
        self,
        scope: RatingScope,
        min_games: int = DEFAULT_MIN_GAMES,
        limit: int = DEFAULT_LIMIT,
    ) -> list[LeaderboardEntry]:
        if min_games < 0:
            raise ValueError("min_games must be non-negative")
        if limit < 1:
            raise ValueError("limit must be positive")
        rows = self.store.get_leaderboard(scope, min_games, limit)
        return [LeaderboardEntry(rank=index + 1, rating=row) for index, row in enumerate(rows)]

    def get_player_ratings(self, player_id: str) -> list[PlayerRating]:
        return self.store.get_player_ratings(player_id)

    def get_player_history(
        self,
        player_id: str,
        scope: RatingScope,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[RatingHistoryPoint]:
        if limit < 1:
            raise ValueError("limit must be positive")
        return self.store.get_history(player_id, scope, limit)
