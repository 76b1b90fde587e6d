from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ratings.db import get_db
from ratings.models import RatingLatest

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check() -> dict:
    return {"status": "ok"}


@router.get("/health/db")
def health_db_check(db: Session = Depends(get_db)) -> dict:
    db.execute(text("SELECT 1"))
    rated_players = db.query(RatingLatest.player_id).distinct().count()
    return {"status": "ok", "db": "ok", "rated_players": rated_players}
