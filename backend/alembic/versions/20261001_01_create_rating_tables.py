"""Create rating_latest and rating_history tables.

Revision ID: 20261001_01
Revises:
Create Date: 2026-10-01

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "rating_latest",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("player_id", sa.String(64), nullable=False),
        sa.Column("scope_type", sa.String(10), nullable=False),
        sa.Column("scope_id", sa.String(64), nullable=True),
        sa.Column("rating", sa.Float(), nullable=False),
        sa.Column("rd", sa.Float(), nullable=False),
        sa.Column("volatility", sa.Float(), nullable=False),
        sa.Column("games_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint("scope_type in ('overall','game')", name="ck_rating_latest_scope_type"),
        sa.UniqueConstraint(
            "player_id",
            "scope_type",
            "scope_id",
            name="uq_rating_latest_player_scope",
            postgresql_nulls_not_distinct=True,
        ),
    )
    op.create_index(
        "idx_rating_latest_scope_rating",
        "rating_latest",
        ["scope_type", "scope_id", "rating"],
    )

    op.create_table(
        "rating_history",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("player_id", sa.String(64), nullable=False),
        sa.Column("scope_type", sa.String(10), nullable=False),
        sa.Column("scope_id", sa.String(64), nullable=True),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rating", sa.Float(), nullable=False),
        sa.Column("rd", sa.Float(), nullable=False),
        sa.Column("volatility", sa.Float(), nullable=False),
        sa.Column("period_games", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("period_wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("period_losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("games_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint("scope_type in ('overall','game')", name="ck_rating_history_scope_type"),
        sa.UniqueConstraint(
            "player_id",
            "scope_type",
            "scope_id",
            "period_end",
            name="uq_rating_history_player_scope_period",
            postgresql_nulls_not_distinct=True,
        ),
    )
    op.create_index(
        "idx_rating_history_player_scope_period",
        "rating_history",
        ["player_id", "scope_type", "scope_id", "period_end"],
    )


def downgrade() -> None:
    op.drop_index("idx_rating_history_player_scope_period", table_name="rating_history")
    op.drop_table("rating_history")
    op.drop_index("idx_rating_latest_scope_rating", table_name="rating_latest")
    op.drop_table("rating_latest")
