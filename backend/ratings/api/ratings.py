from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ratings.config import load_settings
from ratings.db import get_db
from ratings.domain import PlayerRating, RatingHistoryPoint, RatingScope
from ratings.leaderboard import DEFAULT_HISTORY_LIMIT, LeaderboardService
from ratings.store import SqlRatingStore

router = APIRouter(prefix="/api/ratings", tags=["ratings"])


class PlayerRatingOut(BaseModel):
    player_id: str
    scope: str
    rating: float
    rd: float
    volatility: float
    games_played: int
    wins: int
    losses: int
    last_period_end: datetime | None


class LeaderboardRow(PlayerRatingOut):
    rank: int


class LeaderboardResponse(BaseModel):
    scope: str
    min_games: int
    entries: list[LeaderboardRow]


class HistoryPointOut(BaseModel):
    period_end: datetime
    rating: float
    rd: float
    volatility: float
    period_games: int
    period_wins: int
    period_losses: int


class PlayerHistoryResponse(BaseModel):
    player_id: str
    scope: str
    history: list[HistoryPointOut]


def _parse_scope(scope: str) -> RatingScope:
    try:
        return RatingScope.parse(scope)
    except ValueError:
        raise HTTPException(
            status_code=422,
            detail="scope must be 'overall' or 'game:<game_id>'",
        )


def _rating_out(rating: PlayerRating) -> dict:
    return {
        "player_id": rating.player_id,
        "scope": str(rating.scope),
        "rating": rating.rating,
        "rd": rating.rd,
        "volatility": rating.vol,
        "games_played": rating.games_played,
        "wins": rating.wins,
        "losses": rating.losses,
        "last_period_end": rating.last_period_end,
    }


def _history_out(point: RatingHistoryPoint) -> HistoryPointOut:
    return HistoryPointOut(
        period_end=point.period_end,
        rating=point.rating,
        rd=point.rd,
        volatility=point.vol,
        period_games=point.period_games,
        period_wins=point.period_wins,
        period_losses=point.period_losses,
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
def get_leaderboard(
    scope: str = Query("overall"),
    min_games: int | None = Query(None, ge=0, description="Defaults to LEADERBOARD_MIN_GAMES"),
    limit: int | None = Query(None, ge=1, le=500, description="Defaults to LEADERBOARD_LIMIT"),
    db: Session = Depends(get_db),
) -> LeaderboardResponse:
    rating_scope = _parse_scope(scope)
    settings = load_settings()
    if min_games is None:
        min_games = settings.leaderboard_min_games
    if limit is None:
        limit = settings.leaderboard_limit
    entries = LeaderboardService(SqlRatingStore(db)).get_leaderboard(rating_scope, min_games, limit)
    return LeaderboardResponse(
        scope=str(rating_scope),
        min_games=min_games,
        entries=[LeaderboardRow(rank=entry.rank, **_rating_out(entry.rating)) for entry in entries],
    )


@router.get("/player/{player_id}", response_model=list[PlayerRatingOut])
def get_player_ratings(player_id: str, db: Session = Depends(get_db)) -> list[PlayerRatingOut]:
    ratings = LeaderboardService(SqlRatingStore(db)).get_player_ratings(player_id)
    return [PlayerRatingOut(**_rating_out(rating)) for rating in ratings]


@router.get("/player/{player_id}/history", response_model=PlayerHistoryResponse)
def get_player_history(
    player_id: str,
    scope: str = Query("overall"),
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=600),
    db: Session = Depends(get_db),
) -> PlayerHistoryResponse:
    rating_scope = _parse_scope(scope)
    points = LeaderboardService(SqlRatingStore(db)).get_player_history(player_id, rating_scope, limit)
    return PlayerHistoryResponse(
        player_id=player_id,
        scope=str(rating_scope),
        history=[_history_out(point) for point in points],
    )
