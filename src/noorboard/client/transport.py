"""HTTP transport to the leaderboard endpoint (httpx, async)."""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import orjson

from noorboard.leaderboard.policy import canonical_alias, sanitize_board
from noorboard.leaderboard.schemas import LeaderboardRow, SubmitPayload

logger = logging.getLogger(__name__)

MAX_FETCHED_ROWS = 100


class FetchError(Exception):
    """The leaderboard could not be read from the endpoint."""


def build_headers(api_key: str, include_content_type: bool = True) -> dict[str, str]:
    """Request headers: JSON content type plus apikey, and Bearer when the key looks like a JWT."""
    headers: dict[str, str] = {"Content-Type": "application/json"} if include_content_type else {}
    if api_key:
        headers["apikey"] = api_key
        if len(api_key.split(".")) == 3:
            headers["Authorization"] = f"Bearer {api_key}"
    return headers


def normalize_score(value: Any) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, math.floor(number))


class LeaderboardTransport:
    """Talks to one endpoint URL. An empty endpoint means local-only mode."""

    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.endpoint)

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    async def submit(self, payload: SubmitPayload) -> httpx.Response:
        """POST a payload; on a transport error retry once with a bare text/plain request.

        The second attempt avoids a CORS preflight on restrictive networks.
        Its own transport error propagates to the caller.
        """
        body = orjson.dumps(payload.to_wire())
        async with self._http() as http:
            try:
                return await http.post(self.endpoint, content=body, headers=build_headers(self.api_key))
            except httpx.HTTPError as exc:
                logger.debug("primary submit failed, retrying as text/plain: %s", exc)
                return await http.post(self.endpoint, content=body, headers={"Content-Type": "text/plain"})

    async def fetch_rows(
        self,
        board: str,
        period: str,
        section_id: str | None = None,
        day: str | None = None,
    ) -> list[LeaderboardRow]:
        """GET ranked rows, normalised and capped. Raises FetchError on any failure."""
        if not self.configured:
            return []

        params = {"board": board, "period": period}
        if section_id:
            params["sectionId"] = section_id
        if day:
            params["day"] = day

        try:
            async with self._http() as http:
                response = await http.get(
                    self.endpoint,
                    params=params,
                    headers=build_headers(self.api_key, include_content_type=False),
                )
        except httpx.HTTPError as exc:
            raise FetchError(f"fetch leaderboard failed: {exc}") from exc
        if not response.is_success:
            raise FetchError(f"fetch leaderboard failed: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise FetchError("fetch leaderboard failed: invalid JSON") from exc
        raw_rows = data.get("rows") if isinstance(data, dict) else None
        if not isinstance(raw_rows, list):
            return []

        rows: list[LeaderboardRow] = []
        for raw in raw_rows:
            if not isinstance(raw, dict):
                continue
            user_id = str(raw.get("id") or "anon")
            rows.append(
                LeaderboardRow(
                    id=user_id,
                    name=canonical_alias(user_id),
                    board=sanitize_board(str(raw.get("board") or "global")),
                    score=normalize_score(raw.get("score")),
                    day=raw.get("day") if isinstance(raw.get("day"), str) else None,
                    section_id=raw.get("sectionId") if isinstance(raw.get("sectionId"), str) else None,
                )
            )
        return rows[:MAX_FETCHED_ROWS]
