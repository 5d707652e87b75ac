"""Leaderboard endpoint: POST ingests a submission, GET serves ranked rows.

One URL, as the client only knows a single endpoint.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime

import orjson
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from noorboard.config import Settings, get_settings
from noorboard.database import get_session, is_initialized
from noorboard.leaderboard.policy import parse_day, sanitize_board, sanitize_period, today_utc
from noorboard.leaderboard.schemas import LeaderboardResponse, SubmitResponse
from noorboard.leaderboard.service import (
    LeaderboardError,
    ingest_submission,
    parse_submission,
    query_leaderboard,
    utcnow,
)

LEADERBOARD_PATH = "/api/v1/leaderboard"

router = APIRouter(tags=["Leaderboard"])


def get_now() -> datetime:
    """Current UTC time (overridable in tests)."""
    return utcnow()


async def get_leaderboard_db() -> AsyncGenerator[AsyncSession, None]:
    """Database session, or missing-env when no database is configured."""
    if not is_initialized():
        raise LeaderboardError("missing-env", 500)
    async for session in get_session():
        yield session


@router.options(LEADERBOARD_PATH, response_class=PlainTextResponse)
async def leaderboard_options() -> str:
    return "ok"


@router.post(LEADERBOARD_PATH, response_model=SubmitResponse, response_model_exclude_none=True)
async def submit_scores(
    request: Request,
    db: AsyncSession = Depends(get_leaderboard_db),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
    now: datetime = Depends(get_now),  # noqa: B008
) -> SubmitResponse:
    """Ingest one score snapshot.

    The body is read raw because clients behind strict CORS fall back to a
    text/plain content type while still sending JSON.
    """
    body = await request.body()
    try:
        raw = orjson.loads(body)
    except orjson.JSONDecodeError as exc:
        raise LeaderboardError("invalid-json", 400) from exc

    payload = parse_submission(raw, settings, now)
    result = await ingest_submission(db, payload, settings, now)
    return SubmitResponse(ok=True, deduped=True if result.deduped else None)


@router.get(LEADERBOARD_PATH, response_model=LeaderboardResponse, response_model_exclude_none=True)
async def get_board(
    board: str | None = Query(None),
    period: str | None = Query(None),
    section_id: str | None = Query(None, alias="sectionId"),
    day: str | None = Query(None),
    db: AsyncSession = Depends(get_leaderboard_db),  # noqa: B008
    settings: Settings = Depends(get_settings),  # noqa: B008
    now: datetime = Depends(get_now),  # noqa: B008
) -> LeaderboardResponse:
    """Top rows for board/period anchored at day (defaults to today, UTC)."""
    board_name = sanitize_board(board)
    period_name = sanitize_period(period)
    anchor = parse_day(day) if day else today_utc(now)
    if anchor is None:
        raise LeaderboardError("bad-day", 400)
    if board_name == "section" and not section_id:
        raise LeaderboardError("missing-sectionId", 400)

    rows = await query_leaderboard(
        db,
        board=board_name,
        period=period_name,
        day=anchor,
        section_id=section_id,
        top_n=settings.top_n,
    )
    return LeaderboardResponse(rows=rows)


@router.api_route(LEADERBOARD_PATH, methods=["HEAD", "PUT", "PATCH", "DELETE", "TRACE"], include_in_schema=False)
async def leaderboard_method_not_allowed() -> JSONResponse:
    raise LeaderboardError("method-not-allowed", 405)
