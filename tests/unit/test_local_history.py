"""Unit tests for the offline leaderboard view built from local history."""

from __future__ import annotations

import pytest

from noorboard.client.history import in_period, local_rows_from_history
from noorboard.client.identity import get_or_create_identity
from noorboard.client.state import HistoryRow, LeaderboardState
from noorboard.client.store import MemoryStore
from noorboard.leaderboard.schemas import ScoreBundle


@pytest.fixture
def state() -> LeaderboardState:
    return LeaderboardState(MemoryStore())


def _remember(state: LeaderboardState, day: str, user_id: str | None = None, **scores) -> None:
    identity = get_or_create_identity(state)
    state.remember_row(
        HistoryRow(day=day, id=user_id or identity.id, alias=identity.alias, scores=ScoreBundle(**scores))
    )


@pytest.mark.parametrize(
    ("day", "period", "expected"),
    [
        ("2026-03-15", "daily", True),
        ("2026-03-14", "daily", False),
        ("2026-03-09", "weekly", True),
        ("2026-03-08", "weekly", False),
        ("2026-03-01", "monthly", True),
        ("2026-02-28", "monthly", False),
        ("2026-01-01", "yearly", True),
        ("2025-12-31", "yearly", False),
        ("2026-03-16", "weekly", False),
        ("garbage", "daily", False),
    ],
)
def test_in_period(day, period, expected):
    assert in_period(day, period, "2026-03-15") is expected


def test_no_history_yields_single_zero_row(state):
    identity = get_or_create_identity(state)
    rows = local_rows_from_history(state, identity, "global", "daily", "2026-03-15")
    assert len(rows) == 1
    assert rows[0].id == identity.id
    assert rows[0].name == identity.alias
    assert rows[0].score == 0


def test_sums_over_period(state):
    identity = get_or_create_identity(state)
    _remember(state, "2026-03-15", global_=10, dhikr=3)
    _remember(state, "2026-03-12", global_=5, dhikr=1)
    _remember(state, "2026-03-01", global_=100)

    daily = local_rows_from_history(state, identity, "global", "daily", "2026-03-15")
    weekly = local_rows_from_history(state, identity, "global", "weekly", "2026-03-15")
    monthly = local_rows_from_history(state, identity, "dhikr", "monthly", "2026-03-15")
    assert daily[0].score == 10
    assert weekly[0].score == 15
    assert monthly[0].score == 4


def test_other_users_are_excluded(state):
    identity = get_or_create_identity(state)
    _remember(state, "2026-03-15", global_=10)
    _remember(state, "2026-03-15", user_id="anon_someone_else", global_=999)
    rows = local_rows_from_history(state, identity, "global", "daily", "2026-03-15")
    assert [(r.id, r.score) for r in rows] == [(identity.id, 10)]


def test_section_board(state):
    identity = get_or_create_identity(state)
    _remember(state, "2026-03-15", sections={"morning": 7, "evening": 2})
    rows = local_rows_from_history(state, identity, "section", "daily", "2026-03-15", section_id="morning")
    assert rows[0].score == 7
    assert rows[0].section_id == "morning"
    assert rows[0].board == "section"


def test_unknown_board_becomes_global(state):
    identity = get_or_create_identity(state)
    _remember(state, "2026-03-15", global_=4)
    rows = local_rows_from_history(state, identity, "bogus", "daily", "2026-03-15", section_id="x")
    assert rows[0].board == "global"
    assert rows[0].score == 4
    assert rows[0].section_id is None
