from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


# Owned by the contest service; read-only here.
class Contest(Base):
    __tablename__ = "contests"
    __table_args__ = (Index("idx_contests_start", "start"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    game_id: Mapped[str | None] = mapped_column(String(64))


class ContestResult(Base):
    __tablename__ = "contest_results"
    __table_args__ = (
        UniqueConstraint("contest_id", "player_id", name="uq_contest_results_contest_player"),
        Index("idx_contest_results_contest", "contest_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    contest_id: Mapped[str] = mapped_column(String(64), ForeignKey("contests.id"), nullable=False)
    player_id: Mapped[str] = mapped_column(String(64), nullable=False)
    place: Mapped[int | None] = mapped_column(Integer)


class RatingLatest(Base):
    __tablename__ = "rating_latest"
    __table_args__ = (
        UniqueConstraint(
            "player_id",
            "scope_type",
            "scope_id",
            name="uq_rating_latest_player_scope",
            postgresql_nulls_not_distinct=True,
        ),
        CheckConstraint("scope_type in ('overall','game')", name="ck_rating_latest_scope_type"),
        Index("idx_rating_latest_scope_rating", "scope_type", "scope_id", "rating"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    player_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scope_type: Mapped[str] = mapped_column(String(10), nullable=False)
    scope_id: Mapped[str | None] = mapped_column(String(64))
    rating: Mapped[float] = mapped_column(Float, nullable=False)
    rd: Mapped[float] = mapped_column(Float, nullable=False)
    volatility: Mapped[float] = mapped_column(Float, nullable=False)
    games_played: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    wins: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    losses: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    last_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class RatingHistory(Base):
    __tablename__ = "rating_history"
    __table_args__ = (
        UniqueConstraint(
            "player_id",
            "scope_type",
            "scope_id",
            "period_end",
            name="uq_rating_history_player_scope_period",
            postgresql_nulls_not_distinct=True,
        ),
        CheckConstraint("scope_type in ('overall','game')", name="ck_rating_history_scope_type"),
        Index("idx_rating_history_player_scope_period", "player_id", "scope_type", "scope_id", "period_end"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    player_id: Mapped[str] = mapped_column(String(64), nullable=False)
    scope_type: Mapped[str] = mapped_column(String(10), nullable=False)
    scope_id: Mapped[str | None] = mapped_column(String(64))
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rating: Mapped[float] = mapped_column(Float, nullable=False)
    rd: Mapped[float] = mapped_column(Float, nullable=False)
    volatility: Mapped[float] = mapped_column(Float, nullable=False)
    period_games: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    period_wins: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    period_losses: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    games_played: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    wins: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    losses: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
