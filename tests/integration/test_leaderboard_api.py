"""Integration tests for the leaderboard endpoint (POST ingest, GET ranked rows)."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from noorboard.client.state import LeaderboardState
from noorboard.client.store import MemoryStore
from noorboard.db.models import Rollup, ScoreEvent
from noorboard.leaderboard import service
from noorboard.leaderboard.policy import canonical_alias

pytestmark = pytest.mark.asyncio

URL = "/api/v1/leaderboard"
NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
DAY = "2026-03-15"


def _device() -> LeaderboardState:
    return LeaderboardState(MemoryStore())


async def _global_rows(client: AsyncClient, **params: str) -> list[dict]:
    response = await client.get(URL, params={"board": "global", "period": "daily", "day": DAY, **params})
    assert response.status_code == 200
    return response.json()["rows"]


class TestSubmit:
    async def test_accepts_valid_submission(self, client, freeze, device, sign, db_session: AsyncSession):
        freeze(NOW)
        payload = sign(device, {"global": 10, "dhikr": 3, "sections": {"morning": 2, "evening": 1}}, now=NOW)

        response = await client.post(URL, json=payload)
        assert response.status_code == 200
        assert response.json() == {"ok": True}

        events = (await db_session.execute(select(ScoreEvent))).scalars().all()
        assert len(events) == 7
        assert {e.source for e in events} == {"api_v1"}
        assert sorted(e.section_id for e in events if e.board == "section") == ["evening", "morning"]

    async def test_identical_resubmission_is_deduped(self, client, freeze, device, sign, db_session):
        freeze(NOW)
        payload = sign(device, {"global": 10}, now=NOW)

        first = await client.post(URL, json=payload)
        second = await client.post(URL, json=payload)
        assert first.json() == {"ok": True}
        assert second.status_code == 200
        assert second.json() == {"ok": True, "deduped": True}

        count = await db_session.scalar(select(func.count(ScoreEvent.id)))
        assert count == 5
        rows = await _global_rows(client)
        assert [r["score"] for r in rows] == [10]

    async def test_distinct_snapshots_accumulate(self, client, freeze, device, sign):
        freeze(NOW)
        await client.post(URL, json=sign(device, {"global": 10}, now=NOW))
        await client.post(URL, json=sign(device, {"global": 15}, now=NOW))

        rows = await _global_rows(client)
        assert [r["score"] for r in rows] == [25]

    async def test_alias_is_overridden(self, client, freeze, device, sign):
        freeze(NOW)
        payload = sign(device, {"global": 10}, now=NOW)
        payload["identity"]["alias"] = "Champion"

        response = await client.post(URL, json=payload)
        assert response.status_code == 200

        rows = await _global_rows(client)
        user_id = payload["identity"]["id"]
        assert rows == [{"id": user_id, "name": canonical_alias(user_id), "board": "global", "score": 10, "day": DAY}]

    async def test_scores_are_clamped(self, client, freeze, device, sign):
        freeze(NOW)
        payload = sign(device, {"global": 10}, now=NOW)
        payload["scores"]["global"] = 5_000_000
        await client.post(URL, json=payload)

        rows = await _global_rows(client)
        assert rows[0]["score"] == 1_000_000

    async def test_day_skew_rejected(self, client, freeze, device, sign):
        freeze(NOW)
        payload = sign(device, {"global": 10}, day="2026-03-10", now=NOW)
        response = await client.post(URL, json=payload)
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "day-skew"}

    async def test_bad_version_stores_nothing(self, client, freeze, device, sign, db_session):
        freeze(NOW)
        payload = sign(device, {"global": 10}, now=NOW)
        payload["v"] = 2

        response = await client.post(URL, json=payload)
        assert response.status_code == 400
        assert response.json()["error"] == "bad-version"
        assert await db_session.scalar(select(func.count(ScoreEvent.id))) == 0
        assert await db_session.scalar(select(func.count(Rollup.id))) == 0

    async def test_generated_at_skew_rejected(self, client, freeze, device, sign):
        payload = sign(device, {"global": 10}, now=datetime(2026, 3, 13, 12, 0, tzinfo=timezone.utc))
        freeze(NOW)
        payload["day"] = DAY
        response = await client.post(URL, json=payload)
        assert response.json()["error"] == "generatedAt-skew"

    async def test_bad_checksum_rejected(self, client, freeze, device, sign):
        freeze(NOW)
        payload = sign(device, {"global": 10}, now=NOW)
        payload["checksum"] = "nope"
        response = await client.post(URL, json=payload)
        assert response.json() == {"ok": False, "error": "bad-checksum"}

    async def test_invalid_json(self, client):
        response = await client.post(URL, content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "invalid-json"}

    async def test_text_plain_body_accepted(self, client, freeze, device, sign):
        freeze(NOW)
        payload = sign(device, {"global": 3}, now=NOW)
        response = await client.post(
            URL,
            content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    async def test_oversized_identity_rejected(self, client, freeze, device, sign, db_session):
        freeze(NOW)
        payload = sign(device, {"global": 10}, now=NOW)
        payload["identity"]["id"] = "a" * 129

        response = await client.post(URL, json=payload)
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "bad-identity"}
        assert await db_session.scalar(select(func.count(ScoreEvent.id))) == 0

    async def test_oversized_section_key_dropped(self, client, freeze, device, sign, db_session):
        freeze(NOW)
        payload = sign(device, {"global": 5, "sections": {"s" * 129: 3, "morning": 2}}, now=NOW)

        response = await client.post(URL, json=payload)
        assert response.status_code == 200
        sections = (
            await db_session.execute(select(ScoreEvent.section_id).where(ScoreEvent.board == "section"))
        ).scalars().all()
        assert sections == ["morning"]

    async def test_daily_limit(self, client, freeze, override_settings, device, sign):
        freeze(NOW)
        override_settings(max_events_per_user_per_day=5)

        first = await client.post(URL, json=sign(device, {"global": 1}, now=NOW))
        second = await client.post(URL, json=sign(device, {"global": 2}, now=NOW))
        third = await client.post(URL, json=sign(device, {"global": 3}, now=NOW))
        assert first.status_code == 200
        assert second.status_code == 200
        assert third.status_code == 429
        assert third.json() == {"ok": False, "error": "daily-limit"}


class TestRead:
    async def test_sorted_descending(self, client, freeze, sign):
        freeze(NOW)
        low, high = _device(), _device()
        await client.post(URL, json=sign(low, {"global": 30}, now=NOW))
        await client.post(URL, json=sign(high, {"global": 70}, now=NOW))

        rows = await _global_rows(client)
        assert [r["score"] for r in rows] == [70, 30]
        assert rows[0]["id"] == high.user_id

    async def test_top_n(self, client, freeze, override_settings, sign):
        freeze(NOW)
        override_settings(top_n=2)
        for score in (5, 9, 7):
            await client.post(URL, json=sign(_device(), {"global": score}, now=NOW))

        rows = await _global_rows(client)
        assert [r["score"] for r in rows] == [9, 7]

    async def test_board_selects_metric(self, client, freeze, device, sign):
        freeze(NOW)
        await client.post(URL, json=sign(device, {"global": 10, "tasbeehDaily": 99}, now=NOW))

        response = await client.get(URL, params={"board": "tasbeeh_daily", "day": DAY})
        rows = response.json()["rows"]
        assert [(r["board"], r["score"]) for r in rows] == [("tasbeeh_daily", 99)]

    async def test_section_board(self, client, freeze, device, sign):
        freeze(NOW)
        await client.post(URL, json=sign(device, {"sections": {"morning": 4, "evening": 8}}, now=NOW))

        response = await client.get(URL, params={"board": "section", "sectionId": "morning", "day": DAY})
        rows = response.json()["rows"]
        assert len(rows) == 1
        assert rows[0]["score"] == 4
        assert rows[0]["sectionId"] == "morning"

    async def test_section_requires_section_id(self, client):
        response = await client.get(URL, params={"board": "section"})
        assert response.status_code == 400
        assert response.json() == {"ok": False, "error": "missing-sectionId"}

    async def test_bad_day(self, client):
        response = await client.get(URL, params={"day": "2026-13-40"})
        assert response.status_code == 400
        assert response.json()["error"] == "bad-day"

    async def test_unknown_board_and_period_default(self, client, freeze, device, sign):
        freeze(NOW)
        await client.post(URL, json=sign(device, {"global": 6}, now=NOW))

        response = await client.get(URL, params={"board": "bogus", "period": "hourly"})
        rows = response.json()["rows"]
        assert [(r["board"], r["score"], r["day"]) for r in rows] == [("global", 6, DAY)]

    async def test_multi_day_periods(self, client, freeze, device, sign):
        for day, score in (("2026-02-27", 100), ("2026-03-09", 20), ("2026-03-12", 5), ("2026-03-15", 1)):
            moment = datetime.fromisoformat(f"{day}T12:00:00+00:00")
            freeze(moment)
            response = await client.post(URL, json=sign(device, {"global": score}, day=day, now=moment))
            assert response.status_code == 200

        async def total(period: str) -> int:
            rows = await _global_rows(client, period=period)
            return rows[0]["score"]

        assert await total("daily") == 1
        assert await total("weekly") == 26
        assert await total("monthly") == 26
        assert await total("yearly") == 126

    async def test_empty_board(self, client):
        rows = await _global_rows(client)
        assert rows == []


class TestMisc:
    async def test_options_returns_ok(self, client):
        response = await client.options(URL)
        assert response.status_code == 200
        assert response.text == "ok"

    @pytest.mark.parametrize("method", ["PUT", "PATCH", "DELETE", "TRACE"])
    async def test_method_not_allowed(self, client, method):
        response = await client.request(method, URL)
        assert response.status_code == 405
        assert response.json() == {"ok": False, "error": "method-not-allowed"}

    async def test_missing_store(self, bare_client):
        response = await bare_client.get(URL)
        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "missing-env"}

    async def test_head_not_allowed(self, client):
        response = await client.head(URL)
        assert response.status_code == 405


class TestStoreFailures:
    async def test_failed_board_recompute_does_not_block_others(self, client, freeze, device, sign, monkeypatch):
        freeze(NOW)
        original = service._upsert_rollups

        def upsert_failing_on_global(dialect, rows):
            if rows[0]["board"] == "global":
                raise OperationalError("upsert", {}, Exception("disk I/O error"))
            return original(dialect, rows)

        monkeypatch.setattr(service, "_upsert_rollups", upsert_failing_on_global)

        response = await client.post(URL, json=sign(device, {"global": 10, "dhikr": 4}, now=NOW))
        assert response.status_code == 200
        assert response.json() == {"ok": True}

        assert await _global_rows(client) == []
        dhikr = await _global_rows(client, board="dhikr")
        assert [row["score"] for row in dhikr] == [4]

    async def test_event_insert_failure(self, client, freeze, device, sign, monkeypatch, db_session):
        freeze(NOW)

        async def failing_commit(self):
            raise OperationalError("commit", {}, Exception("database is locked"))

        with monkeypatch.context() as m:
            m.setattr(AsyncSession, "commit", failing_commit)
            response = await client.post(URL, json=sign(device, {"global": 10}, now=NOW))

        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "event-insert-failed"}
        assert await db_session.scalar(select(func.count(ScoreEvent.id))) == 0

    async def test_read_failure(self, client, monkeypatch):
        async def failing_execute(self, *args, **kwargs):
            raise OperationalError("select", {}, Exception("no such table"))

        monkeypatch.setattr(AsyncSession, "execute", failing_execute)

        response = await client.get(URL, params={"board": "global", "day": DAY})
        assert response.status_code == 500
        assert response.json() == {"ok": False, "error": "read-failed"}
