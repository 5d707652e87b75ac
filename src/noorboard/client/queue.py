"""Bounded, persisted at-least-once submission queue.

Items are delivered in enqueue order. Transient failures (5xx, auth,
not-found, timeout, rate limiting, network errors) stay queued for the next
flush; permanent rejections are dropped so they do not block the queue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from noorboard.client.state import HistoryRow, LeaderboardState
from noorboard.client.transport import LeaderboardTransport
from noorboard.leaderboard.policy import validate_payload
from noorboard.leaderboard.schemas import SubmitPayload

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({401, 403, 404, 408, 425, 429})


@dataclass(frozen=True)
class FlushResult:
    ok: bool
    sent: int
    reason: str | None = None


def should_retry_status(status: int) -> bool:
    return status >= 500 or status in RETRYABLE_STATUSES


def retry_reason(status: int) -> str:
    if status == 429:
        return "rate_limited"
    if status in (401, 403):
        return "auth"
    return "network_retry"


def drop_reason(status: int) -> str:
    return "invalid_payload" if status in (400, 422) else "server"


class SubmissionQueue:
    def __init__(self, state: LeaderboardState) -> None:
        self.state = state

    def pending(self) -> list[SubmitPayload]:
        return list(self.state.queue)

    def enqueue(self, payload: SubmitPayload, now: datetime | None = None) -> bool:
        """Queue a payload and remember it in local history. Invalid payloads are ignored."""
        if not validate_payload(payload.to_wire(), now=now).ok:
            logger.debug("not queueing invalid payload for day %s", payload.day)
            return False

        self.state.replace_queue([*self.state.queue, payload])
        self.state.remember_row(
            HistoryRow(
                day=payload.day,
                id=payload.identity.id,
                alias=payload.identity.alias,
                scores=payload.scores,
            )
        )
        return True

    async def flush(self, transport: LeaderboardTransport, now: datetime | None = None) -> FlushResult:
        """Try to deliver every queued payload once, in order."""
        if not transport.configured:
            return FlushResult(ok=False, sent=0)

        queue = self.pending()
        if not queue:
            return FlushResult(ok=True, sent=0)

        sent = 0
        dropped = 0
        last_error: str | None = None
        remaining: list[SubmitPayload] = []

        for item in queue:
            if not validate_payload(item.to_wire(), now=now).ok:
                continue

            try:
                response = await transport.submit(item)
            except httpx.HTTPError as exc:
                logger.debug("submit failed, keeping item for retry: %s", exc)
                remaining.append(item)
                last_error = "network_retry"
                continue

            if response.is_success:
                sent += 1
            elif should_retry_status(response.status_code):
                remaining.append(item)
                last_error = retry_reason(response.status_code)
            else:
                dropped += 1
                last_error = drop_reason(response.status_code)

        self.state.replace_queue(remaining)
        ok = not remaining and dropped == 0
        return FlushResult(ok=ok, sent=sent, reason=None if ok else last_error)
