"""Leaderboard policy: bounds, sanitization and payload validation.

Shared by the server (authoritative) and the client (fast-fail before
queueing). Everything here is pure: the current date/time is passed in
by the caller or read once at the call site.

Reason codes are stable strings the client branches on:
bad-version, bad-identity, bad-alias, bad-day, day-skew,
bad-generatedAt, generatedAt-skew, bad-checksum.
"""

from __future__ import annotations

import hashlib
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

import orjson

MAX_QUEUE_SIZE = 20
MAX_HISTORY_ROWS = 400
MAX_ALIAS_LENGTH = 40
MAX_SECTION_SLOTS = 64
# Matches the VARCHAR(128) id, fingerprint and section_id columns.
MAX_ID_LENGTH = 128
MAX_SCORE_PER_METRIC = 200_000
MAX_TOTAL_GLOBAL = 1_000_000
MAX_DAYS_SKEW = 3
MAX_GENERATED_AT_SKEW = timedelta(hours=36)

PAYLOAD_VERSION = 1
ALIAS_LABEL = "مستخدم"
ALIAS_BUCKETS = 9999

BOARDS: tuple[str, ...] = ("global", "dhikr", "quran", "prayers", "tasbeeh_daily", "section")
SCALAR_BOARDS: tuple[str, ...] = ("global", "dhikr", "quran", "prayers", "tasbeeh_daily")
PERIODS: tuple[str, ...] = ("daily", "weekly", "monthly", "yearly")

# Board name -> key in the score bundle wire format.
BOARD_SCORE_KEYS: dict[str, str] = {
    "global": "global",
    "dhikr": "dhikr",
    "quran": "quran",
    "prayers": "prayers",
    "tasbeeh_daily": "tasbeehDaily",
}

_DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_CHECKSUM_RE = re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE)
_ALIAS_RE = re.compile(rf"^{ALIAS_LABEL}\s+\d+$")


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: str | None = None


_OK = ValidationResult(ok=True)


def _fail(reason: str) -> ValidationResult:
    return ValidationResult(ok=False, reason=reason)


# ── Identity helpers ──


def hash_string(value: str) -> int:
    """31-multiplier rolling hash over UTF-16 code units, kept in 32 bits."""
    h = 0
    raw = value.encode("utf-16-le")
    for i in range(0, len(raw), 2):
        unit = raw[i] | (raw[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    return h


def canonical_alias(user_id: str | None) -> str:
    """Display name derived from the user id alone, e.g. 'مستخدم 4821'."""
    idx = hash_string(str(user_id or "anon")) % ALIAS_BUCKETS + 1
    return f"{ALIAS_LABEL} {idx}"


def is_canonical_alias(alias: str | None, user_id: str) -> bool:
    value = (alias or "").strip()
    return bool(_ALIAS_RE.match(value)) and value == canonical_alias(user_id)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def canonical_json(obj: Any) -> str:
    """Compact JSON with insertion-ordered keys; the checksum is taken over this."""
    return orjson.dumps(obj).decode("utf-8")


# ── Sanitization ──


def clamp_int(value: Any, maximum: int = MAX_SCORE_PER_METRIC) -> int:
    """Coerce to an integer in [0, maximum]; anything non-numeric or non-finite is 0."""
    if value is None:
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, min(maximum, math.floor(number)))


def sanitize_scores(scores: Mapping[str, Any] | None) -> dict[str, Any]:
    """Floor-and-clamp every metric and cap the number of section slots.

    Section ids that are empty or longer than MAX_ID_LENGTH are dropped.

    Returns a plain dict in wire key order:
    global, dhikr, quran, prayers, tasbeehDaily, sections.
    """
    scores = scores if isinstance(scores, Mapping) else {}
    raw_sections = scores.get("sections")
    if not isinstance(raw_sections, Mapping):
        raw_sections = {}

    sections: dict[str, int] = {}
    for key, value in list(raw_sections.items())[:MAX_SECTION_SLOTS]:
        section_id = str(key)
        if not section_id or len(section_id) > MAX_ID_LENGTH:
            continue
        sections[section_id] = clamp_int(value)

    return {
        "global": clamp_int(scores.get("global"), MAX_TOTAL_GLOBAL),
        "dhikr": clamp_int(scores.get("dhikr")),
        "quran": clamp_int(scores.get("quran")),
        "prayers": clamp_int(scores.get("prayers")),
        "tasbeehDaily": clamp_int(scores.get("tasbeehDaily")),
        "sections": sections,
    }


def sanitize_board(board: str | None) -> str:
    return board if board in BOARDS else "global"


def sanitize_period(period: str | None) -> str:
    return period if period in PERIODS else "daily"


# ── Dates ──


def parse_day(value: Any) -> date | None:
    """Parse a strict YYYY-MM-DD calendar date, or None if it is not a real date."""
    if not isinstance(value, str) or not _DAY_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def is_valid_day(value: Any) -> bool:
    return parse_day(value) is not None


def day_diff(day: date, today: date) -> int:
    return (day - today).days


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(moment: datetime) -> str:
    """UTC ISO-8601 with millisecond precision and a Z suffix."""
    utc = moment.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def today_utc(now: datetime | None = None) -> date:
    return (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()


# ── Validation ──


def validate_payload(
    payload: Any,
    *,
    now: datetime | None = None,
    server_checks: bool = False,
    max_days_skew: int = MAX_DAYS_SKEW,
    max_generated_at_skew: timedelta = MAX_GENERATED_AT_SKEW,
) -> ValidationResult:
    """Structural and bounds checks on a submission in wire (camelCase) form.

    Fails closed: the first failing check determines the reason. The server
    passes server_checks=True to also verify generatedAt and checksum format.
    """
    now = now or datetime.now(timezone.utc)

    if not isinstance(payload, Mapping):
        return _fail("bad-version")
    version = payload.get("v")
    if isinstance(version, bool) or version != PAYLOAD_VERSION:
        return _fail("bad-version")

    identity = payload.get("identity")
    if not isinstance(identity, Mapping):
        return _fail("bad-identity")
    user_id = identity.get("id")
    fingerprint = identity.get("fingerprint")
    if not isinstance(user_id, str) or not user_id or not isinstance(fingerprint, str) or not fingerprint:
        return _fail("bad-identity")
    if len(user_id) > MAX_ID_LENGTH or len(fingerprint) > MAX_ID_LENGTH:
        return _fail("bad-identity")

    alias = identity.get("alias")
    if not isinstance(alias, str) or not alias or len(alias) > MAX_ALIAS_LENGTH:
        return _fail("bad-alias")

    day = parse_day(payload.get("day"))
    if day is None:
        return _fail("bad-day")
    if abs(day_diff(day, today_utc(now))) > max_days_skew:
        return _fail("day-skew")

    if server_checks:
        generated_at = parse_timestamp(payload.get("generatedAt"))
        if generated_at is None:
            return _fail("bad-generatedAt")
        if abs(now - generated_at) > max_generated_at_skew:
            return _fail("generatedAt-skew")

        checksum = payload.get("checksum")
        if not isinstance(checksum, str) or not _CHECKSUM_RE.match(checksum):
            return _fail("bad-checksum")

    return _OK
