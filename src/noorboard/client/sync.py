"""Sync facade used by the UI: submit with cooldown, pull with local fallback.

Nothing here raises into the caller. Every outcome is reported through
`status` (a SyncStatus with a state and a human-readable hint).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from noorboard.client.history import local_rows_from_history
from noorboard.client.identity import Identity, build_submit_payload, get_or_create_identity
from noorboard.client.queue import FlushResult, SubmissionQueue
from noorboard.client.state import LeaderboardState
from noorboard.client.store import FileStore
from noorboard.client.transport import FetchError, LeaderboardTransport
from noorboard.config import ClientSettings, get_client_settings
from noorboard.leaderboard.schemas import LeaderboardRow, ScoreBundle

logger = logging.getLogger(__name__)

MAX_VISIBLE_ROWS = 30

FLUSH_HINTS: dict[str | None, str] = {
    "rate_limited": "The server is limiting requests for now",
    "auth": "Authentication keys were rejected",
    "invalid_payload": "The submission was invalid",
    "network_retry": "Connection problem, will retry",
}
DEFAULT_FLUSH_HINT = "Could not finish syncing"


@dataclass(frozen=True)
class SyncStatus:
    state: str = "idle"  # idle | syncing | ok | cooldown | error
    hint: str = ""


def hint_for(result: FlushResult) -> str:
    return FLUSH_HINTS.get(result.reason, DEFAULT_FLUSH_HINT)


class LeaderboardSync:
    def __init__(
        self,
        state: LeaderboardState,
        transport: LeaderboardTransport,
        cooldown_seconds: float = 45.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state = state
        self.transport = transport
        self.queue = SubmissionQueue(state)
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.status = SyncStatus()
        self._last_submit_at: float | None = None

    @classmethod
    def from_settings(cls, settings: ClientSettings | None = None) -> LeaderboardSync:
        settings = settings or get_client_settings()
        return cls(
            LeaderboardState(FileStore(settings.state_path)),
            LeaderboardTransport(settings.endpoint, settings.api_key, timeout=settings.request_timeout_seconds),
            cooldown_seconds=settings.submit_cooldown_seconds,
        )

    @property
    def identity(self) -> Identity:
        return get_or_create_identity(self.state)

    def _set(self, state: str, hint: str = "") -> SyncStatus:
        self.status = SyncStatus(state, hint)
        return self.status

    async def submit(
        self,
        day: str,
        scores: ScoreBundle | dict[str, Any],
        now: datetime | None = None,
    ) -> SyncStatus:
        """Queue a snapshot and, when an endpoint is configured, flush the queue."""
        current = self.clock()
        if self._last_submit_at is not None and current - self._last_submit_at < self.cooldown_seconds:
            return self._set("cooldown", "Please wait a moment before submitting again")
        self._last_submit_at = current

        payload = build_submit_payload(self.state, day, scores, now=now)
        self.queue.enqueue(payload, now=now)

        if not self.transport.configured:
            return self._set("error", "Cloud sync is not configured")

        self._set("syncing")
        result = await self.queue.flush(self.transport, now=now)
        if not result.ok:
            logger.info("leaderboard flush incomplete: sent=%s reason=%s", result.sent, result.reason)
            return self._set("error", hint_for(result))
        return self._set("ok", f"Sent {result.sent} submission(s)")

    async def pull(
        self,
        board: str,
        period: str,
        day: str,
        section_id: str | None = None,
    ) -> list[LeaderboardRow]:
        """Remote rows, or the local-history view when remote is unavailable or empty."""
        section = section_id if board == "section" else None
        rows: list[LeaderboardRow] = []
        if self.transport.configured:
            self._set("syncing")
            try:
                rows = await self.transport.fetch_rows(board, period, section_id=section, day=day)
                self._set("ok", "Leaderboard updated")
            except FetchError as exc:
                logger.info("leaderboard fetch failed, using local history: %s", exc)
                self._set("error", "Could not refresh leaderboard")

        if rows:
            return rows
        return local_rows_from_history(self.state, self.identity, board, period, day, section)

    def merged_rows(
        self,
        rows: list[LeaderboardRow],
        my_entry: LeaderboardRow,
    ) -> list[LeaderboardRow]:
        """Rows with this device's entry replaced by its live one, ranked and capped."""
        merged = [row for row in rows if row.id != my_entry.id] + [my_entry]
        visible = [
            row
            for row in merged
            if row.board == my_entry.board and (row.board != "section" or row.section_id == my_entry.section_id)
        ]
        return sorted(visible, key=lambda row: -row.score)[:MAX_VISIBLE_ROWS]

    @staticmethod
    def my_rank(rows: list[LeaderboardRow], my_id: str) -> int:
        for idx, row in enumerate(rows):
            if row.id == my_id:
                return idx + 1
        return 1

    def reset_data(self) -> None:
        self.state.reset()
        self._last_submit_at = None
        self._set("idle")
