"""Offline leaderboard view built from this device's own submissions."""

from __future__ import annotations

from datetime import date, timedelta

from noorboard.client.identity import Identity
from noorboard.client.state import LeaderboardState
from noorboard.leaderboard.policy import parse_day, sanitize_board
from noorboard.leaderboard.schemas import LeaderboardRow


def in_period(day: str, period: str, today: str) -> bool:
    """Whether day falls in the period window ending on today."""
    day_date = parse_day(day)
    today_date = parse_day(today)
    if day_date is None or today_date is None:
        return False

    if period == "daily":
        return day_date == today_date
    if period == "weekly":
        return today_date - timedelta(days=6) <= day_date <= today_date
    if period == "monthly":
        return (day_date.year, day_date.month) == (today_date.year, today_date.month) and day_date <= today_date
    return day_date.year == today_date.year and day_date <= today_date


def local_rows_from_history(
    state: LeaderboardState,
    identity: Identity,
    board: str,
    period: str,
    today: str | date,
    section_id: str | None = None,
) -> list[LeaderboardRow]:
    """Single-row leaderboard for the local user, summed over the period.

    Always exactly one row; the score is 0 when nothing was remembered in
    the window. Never includes other users.
    """
    board = sanitize_board(board)
    today_iso = today.isoformat() if isinstance(today, date) else today
    rows = [h for h in state.history if h.id == identity.id and in_period(h.day, period, today_iso)]

    score = sum(row.scores.for_board(board, section_id) for row in rows)
    return [
        LeaderboardRow(
            id=identity.id,
            name=identity.alias,
            board=board,
            score=score,
            day=today_iso,
            section_id=section_id if board == "section" else None,
        )
    ]
