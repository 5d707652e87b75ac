#!/usr/bin/env python3
"""Smoke-check a deployed leaderboard endpoint.

Environment:
  LEADERBOARD_ENDPOINT (or NOOR_LEADERBOARD_ENDPOINT)  endpoint URL, required
  LEADERBOARD_ANON_KEY (or NOOR_LEADERBOARD_API_KEY)   optional API key
  LB_BOARD / LB_PERIOD / LB_DAY                        query, default global/daily/today

Exit code 0 iff the endpoint answered 2xx.
"""

from __future__ import annotations

import asyncio
import os
import sys
from datetime import datetime, timezone

import httpx

from noorboard.client.transport import build_headers


async def check() -> int:
    endpoint = os.environ.get("LEADERBOARD_ENDPOINT") or os.environ.get("NOOR_LEADERBOARD_ENDPOINT", "")
    api_key = os.environ.get("LEADERBOARD_ANON_KEY") or os.environ.get("NOOR_LEADERBOARD_API_KEY", "")
    if not endpoint:
        print("[leaderboard:health] Missing endpoint.", file=sys.stderr)
        print("Set LEADERBOARD_ENDPOINT before running.", file=sys.stderr)
        return 1

    params = {
        "board": os.environ.get("LB_BOARD", "global"),
        "period": os.environ.get("LB_PERIOD", "daily"),
        "day": os.environ.get("LB_DAY") or datetime.now(timezone.utc).date().isoformat(),
    }

    print(f"[leaderboard:health] GET {endpoint} {params}")
    async with httpx.AsyncClient(timeout=15.0) as client:
        try:
            response = await client.get(endpoint, params=params, headers=build_headers(api_key, False))
        except httpx.HTTPError as exc:
            print(f"[leaderboard:health] failed: {exc}", file=sys.stderr)
            return 1

    print(f"[leaderboard:health] status: {response.status_code}")
    try:
        data = response.json()
    except ValueError:
        print(response.text[:500])
        return 0 if response.is_success else 1

    rows = data.get("rows") if isinstance(data, dict) else None
    rows = rows if isinstance(rows, list) else []
    print(f"[leaderboard:health] rows: {len(rows)}")
    top = rows[0] if rows else None
    if isinstance(top, dict):
        print(f"[leaderboard:health] top: {top.get('name', '-')} ({top.get('score', 0)})")
    return 0 if response.is_success else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(check()))
