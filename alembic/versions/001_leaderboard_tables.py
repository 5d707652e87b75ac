"""Leaderboard store: raw score events and daily rollups.

Revision ID: 001_leaderboard_tables
Revises:
Create Date: 2026-02-10
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_leaderboard_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Raw events (append-only) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_score_events (
            id BIGSERIAL PRIMARY KEY,
            day DATE NOT NULL,
            generated_at TIMESTAMPTZ NOT NULL,
            user_id VARCHAR(128) NOT NULL,
            alias VARCHAR(64) NOT NULL,
            fingerprint VARCHAR(128) NOT NULL,
            checksum VARCHAR(64) NOT NULL,
            period VARCHAR(16) NOT NULL DEFAULT 'daily',
            board VARCHAR(32) NOT NULL,
            section_id VARCHAR(128),
            score BIGINT NOT NULL DEFAULT 0,
            source VARCHAR(32) NOT NULL DEFAULT 'api_v1',
            payload JSONB NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_lb_events_dedup
        ON leaderboard_score_events(day, user_id, checksum)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_lb_events_day_board
        ON leaderboard_score_events(day, board)
    """)

    # --- Daily rollups (section_id '' for non-section boards) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS leaderboard_rollups (
            id BIGSERIAL PRIMARY KEY,
            day DATE NOT NULL,
            period VARCHAR(16) NOT NULL DEFAULT 'daily',
            board VARCHAR(32) NOT NULL,
            section_id VARCHAR(128) NOT NULL DEFAULT '',
            user_id VARCHAR(128) NOT NULL,
            alias VARCHAR(64) NOT NULL,
            score BIGINT NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT lb_rollups_natural_key UNIQUE (day, period, board, section_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_lb_rollups_board_day
        ON leaderboard_rollups(board, day)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS leaderboard_rollups")
    op.execute("DROP TABLE IF EXISTS leaderboard_score_events")
