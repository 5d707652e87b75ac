"""ORM models for the leaderboard store.

Two tables:
- leaderboard_score_events: append-only raw events, one row per board
  contribution of an accepted submission.
- leaderboard_rollups: per-day materialized sums, upserted on the natural
  key (day, period, board, section_id, user_id).

section_id in rollups is stored as "" for non-section boards so the natural
key never contains NULL (NULLs never conflict in a unique index).
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Date,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from noorboard.db.base import Base

# SQLite only auto-increments INTEGER PRIMARY KEY columns.
_PK = BigInteger().with_variant(Integer(), "sqlite")
_JSON = JSON().with_variant(JSONB(), "postgresql")


class ScoreEvent(Base):
    """Maps to the 'leaderboard_score_events' table."""

    __tablename__ = "leaderboard_score_events"
    __table_args__ = (
        Index("idx_lb_events_dedup", "day", "user_id", "checksum"),
        Index("idx_lb_events_day_board", "day", "board"),
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    alias: Mapped[str] = mapped_column(String(64), nullable=False)
    fingerprint: Mapped[str] = mapped_column(String(128), nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False, default="daily")
    board: Mapped[str] = mapped_column(String(32), nullable=False)
    section_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="api_v1")
    payload: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Rollup(Base):
    """Maps to the 'leaderboard_rollups' table."""

    __tablename__ = "leaderboard_rollups"
    __table_args__ = (
        UniqueConstraint("day", "period", "board", "section_id", "user_id", name="lb_rollups_natural_key"),
        Index("idx_lb_rollups_board_day", "board", "day"),
    )

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    day: Mapped[date] = mapped_column(Date, nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False, default="daily")
    board: Mapped[str] = mapped_column(String(32), nullable=False)
    section_id: Mapped[str] = mapped_column(String(128), nullable=False, default="", server_default="")
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    alias: Mapped[str] = mapped_column(String(64), nullable=False)
    score: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
