"""Leaderboard service: ingest, fan-out, rollup recompute and ranked reads.

Raw events are append-only. After every accepted submission the rollups for
that day are rebuilt from scratch for each board (sum of all raw events per
user/section) and upserted on their natural key, so the rollup store always
reflects the full event log for the day. Multi-day periods are summed again
across daily rollups at read time.

Resubmitting a different snapshot for the same day adds a new event group,
so the daily total is the sum of all distinct snapshots, not the latest one.
Identical resubmissions (same day, user and checksum) are deduplicated.
Deduplication is a read before the insert, not a unique constraint: two
identical POSTs racing each other can both insert their events.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from noorboard.config import Settings
from noorboard.db.models import Rollup, ScoreEvent
from noorboard.leaderboard.policy import (
    BOARD_SCORE_KEYS,
    BOARDS,
    canonical_alias,
    clamp_int,
    parse_timestamp,
    sanitize_scores,
    validate_payload,
)
from noorboard.leaderboard.schemas import LeaderboardRow, SubmitPayload

logger = structlog.get_logger()

EVENT_SOURCE = "api_v1"
ROLLUP_PERIOD = "daily"


class LeaderboardError(Exception):
    """A rejected request, carrying a stable reason code and HTTP status."""

    def __init__(self, reason: str, status_code: int = 400) -> None:
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code


@dataclass(frozen=True)
class IngestResult:
    deduped: bool = False
    events: int = 0


@dataclass
class AggregatedScore:
    user_id: str
    alias: str
    section_id: str | None
    score: int


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Parsing ──


def parse_submission(raw: Any, settings: Settings, now: datetime | None = None) -> SubmitPayload:
    """Turn a decoded JSON body into a trusted SubmitPayload or raise LeaderboardError.

    The alias is always re-derived from the id and the scores are sanitized
    before validation, so neither can be spoofed by the client.
    """
    now = now or utcnow()
    wire: Any = raw
    if isinstance(raw, dict):
        wire = dict(raw)
        identity = wire.get("identity")
        if isinstance(identity, dict):
            identity = dict(identity)
            identity["alias"] = canonical_alias(str(identity.get("id") or ""))
            wire["identity"] = identity
        wire["scores"] = sanitize_scores(wire.get("scores"))

    result = validate_payload(
        wire,
        now=now,
        server_checks=True,
        max_days_skew=settings.max_days_skew,
        max_generated_at_skew=timedelta(hours=settings.max_generated_at_skew_hours),
    )
    if not result.ok:
        raise LeaderboardError(result.reason or "invalid-payload", 400)
    return SubmitPayload.model_validate(wire)


# ── Fan-out ──


def fan_out(payload: SubmitPayload) -> list[ScoreEvent]:
    """Expand one submission into one raw event per board plus one per section."""
    wire = payload.to_wire()
    scores = wire["scores"]
    generated_at = parse_timestamp(payload.generated_at) or utcnow()
    base: dict[str, Any] = {
        "day": payload.day_date,
        "generated_at": generated_at,
        "user_id": payload.identity.id,
        "alias": payload.identity.alias,
        "fingerprint": payload.identity.fingerprint,
        "checksum": payload.checksum,
        "period": ROLLUP_PERIOD,
        "source": EVENT_SOURCE,
        "payload": wire,
    }

    events = [
        ScoreEvent(**base, board=board, section_id=None, score=scores[key])
        for board, key in BOARD_SCORE_KEYS.items()
    ]
    for section_id, score in scores["sections"].items():
        events.append(ScoreEvent(**base, board="section", section_id=section_id, score=clamp_int(score)))
    return events


# ── Aggregation ──


def aggregate_scores(rows: Iterable[Any]) -> list[AggregatedScore]:
    """Sum scores per (user_id, section_id), keeping first-seen order.

    Rows need user_id, score and section_id attributes; alias is optional
    and taken from the first row of each group.
    """
    grouped: dict[tuple[str, str], AggregatedScore] = {}
    for row in rows:
        section_id = row.section_id or None
        key = (row.user_id, section_id or "")
        current = grouped.get(key)
        if current is None:
            grouped[key] = AggregatedScore(
                user_id=row.user_id,
                alias=getattr(row, "alias", None) or canonical_alias(row.user_id),
                section_id=section_id,
                score=clamp_int(row.score, maximum=2**62),
            )
        else:
            current.score += clamp_int(row.score, maximum=2**62)
    return list(grouped.values())


def _upsert_rollups(dialect: str, rows: list[dict[str, Any]]) -> Any:
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        msg = f"Unsupported database dialect for rollup upsert: {dialect}"
        raise RuntimeError(msg)

    stmt = insert(Rollup).values(rows)
    return stmt.on_conflict_do_update(
        index_elements=["day", "period", "board", "section_id", "user_id"],
        set_={
            "alias": stmt.excluded.alias,
            "score": stmt.excluded.score,
            "updated_at": stmt.excluded.updated_at,
        },
    )


async def recompute_rollups(db: AsyncSession, day: date, now: datetime | None = None) -> dict[str, int]:
    """Rebuild every board's daily rollup for a day from the raw events.

    Each board commits on its own; a store error on one board is logged and
    skipped so the remaining boards still get refreshed.
    Returns board -> number of rollup rows written.
    """
    now = now or utcnow()
    dialect = db.get_bind().dialect.name
    written: dict[str, int] = {}

    for board in BOARDS:
        try:
            query = select(ScoreEvent.user_id, ScoreEvent.alias, ScoreEvent.score, ScoreEvent.section_id).where(
                ScoreEvent.day == day,
                ScoreEvent.board == board,
            )
            if board != "section":
                query = query.where(ScoreEvent.section_id.is_(None))
            result = await db.execute(query)
            grouped = aggregate_scores(result.all())
            if not grouped:
                written[board] = 0
                continue

            rows = [
                {
                    "day": day,
                    "period": ROLLUP_PERIOD,
                    "board": board,
                    "section_id": (g.section_id or "") if board == "section" else "",
                    "user_id": g.user_id,
                    "alias": canonical_alias(g.user_id),
                    "score": g.score,
                    "updated_at": now,
                }
                for g in grouped
            ]
            await db.execute(_upsert_rollups(dialect, rows))
            await db.commit()
            written[board] = len(rows)
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning("rollup_recompute_failed", day=day.isoformat(), board=board, error=str(exc))

    return written


# ── Ingest ──


async def ingest_submission(
    db: AsyncSession,
    payload: SubmitPayload,
    settings: Settings,
    now: datetime | None = None,
) -> IngestResult:
    """Dedupe, abuse-guard, persist raw events, then recompute the day's rollups."""
    day = payload.day_date
    user_id = payload.identity.id

    try:
        duplicate = await db.execute(
            select(ScoreEvent.id)
            .where(
                ScoreEvent.day == day,
                ScoreEvent.user_id == user_id,
                ScoreEvent.checksum == payload.checksum,
            )
            .limit(1)
        )
        if duplicate.first() is not None:
            logger.info("submission_deduped", day=payload.day, user_id=user_id)
            return IngestResult(deduped=True)

        existing = await db.scalar(
            select(func.count(ScoreEvent.id)).where(
                ScoreEvent.day == day,
                ScoreEvent.user_id == user_id,
            )
        )
        if (existing or 0) > settings.max_events_per_user_per_day:
            logger.warning("daily_limit_exceeded", day=payload.day, user_id=user_id, events=existing)
            raise LeaderboardError("daily-limit", 429)

        events = fan_out(payload)
        db.add_all(events)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("event_insert_failed", day=payload.day, user_id=user_id, error=str(exc))
        raise LeaderboardError("event-insert-failed", 500) from exc

    await recompute_rollups(db, day, now)
    logger.info("submission_accepted", day=payload.day, user_id=user_id, events=len(events))
    return IngestResult(deduped=False, events=len(events))


# ── Query ──


def period_range(anchor: date, period: str) -> tuple[date, date]:
    """Inclusive (from, to) dates for a period ending on the anchor day."""
    if period == "weekly":
        return anchor - timedelta(days=6), anchor
    if period == "monthly":
        return anchor.replace(day=1), anchor
    if period == "yearly":
        return anchor.replace(month=1, day=1), anchor
    return anchor, anchor


async def query_leaderboard(
    db: AsyncSession,
    *,
    board: str,
    period: str,
    day: date,
    section_id: str | None = None,
    top_n: int = 30,
) -> list[LeaderboardRow]:
    """Top rows for a board over a period, summed across the daily rollups."""
    start, end = period_range(day, period)
    query = select(Rollup.user_id, Rollup.score, Rollup.section_id).where(
        Rollup.day >= start,
        Rollup.day <= end,
        Rollup.period == ROLLUP_PERIOD,
        Rollup.board == board,
        Rollup.section_id == (section_id if board == "section" else ""),
    )

    try:
        result = await db.execute(query)
        grouped = aggregate_scores(result.all())
    except SQLAlchemyError as exc:
        logger.error("leaderboard_read_failed", board=board, period=period, error=str(exc))
        raise LeaderboardError("read-failed", 500) from exc

    ranked = sorted(grouped, key=lambda g: (-g.score, g.user_id))[:top_n]
    return [
        LeaderboardRow(
            id=g.user_id,
            name=canonical_alias(g.user_id),
            board=board,
            score=g.score,
            day=day.isoformat(),
            section_id=g.section_id if board == "section" else None,
        )
        for g in ranked
    ]
