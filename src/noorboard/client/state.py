"""Client-side leaderboard state container.

All identity, queue and history reads and writes go through LeaderboardState.
Values are loaded once, validated into typed objects, and every mutation is
written back by a single persist listener. Storage failures never escape:
the state keeps working in memory. `persistent` tracks the last storage
operation on any key; `identity_persistent` tracks only the identity keys
(id, alias, secret) and the schema marker, and recovers once an identity
write succeeds again.

Bumping SCHEMA_VERSION wipes every stored key on next load; stored data is
never converted between schema versions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from noorboard.client.store import StorageError
from noorboard.leaderboard.policy import MAX_HISTORY_ROWS, MAX_QUEUE_SIZE, parse_day, validate_payload
from noorboard.leaderboard.schemas import ScoreBundle, SubmitPayload

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "2"
SCHEMA_KEY = "noor_lb_schema_version"

ID_KEY = "noor_lb_id_v2"
ALIAS_KEY = "noor_lb_alias_v2"
SECRET_KEY = "noor_lb_secret_v2"
QUEUE_KEY = "noor_lb_queue_v2"
HISTORY_KEY = "noor_lb_history_v2"

_LEGACY_KEYS = (
    "noor_lb_id_v1",
    "noor_lb_alias_v1",
    "noor_lb_secret_v1",
    "noor_lb_queue_v1",
    "noor_device_id_v1",
    "noor_lb_user_index_v2",
    "noor_lb_user_counter_v2",
)
IDENTITY_KEYS = (ID_KEY, ALIAS_KEY, SECRET_KEY)
_ALL_KEYS = (ID_KEY, ALIAS_KEY, SECRET_KEY, QUEUE_KEY, HISTORY_KEY, *_LEGACY_KEYS)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any: ...
    def set(self, key: str, value: Any) -> None: ...
    def remove(self, *keys: str) -> None: ...


class HistoryRow(BaseModel):
    """One remembered submission of this device: its scores for a day."""

    day: str
    id: str
    alias: str
    scores: ScoreBundle

    def to_wire(self) -> dict[str, Any]:
        return {"day": self.day, "id": self.id, "alias": self.alias, "scores": self.scores.to_wire()}


Listener = Callable[[str], None]


class LeaderboardState:
    def __init__(self, store: KeyValueStore, now: datetime | None = None) -> None:
        self._store = store
        self._listeners: list[Listener] = [self._persist]
        self.persistent = True
        self.identity_persistent = True

        self.user_id: str | None = None
        self.alias: str | None = None
        self.secret: str | None = None
        self.queue: list[SubmitPayload] = []
        self.history: list[HistoryRow] = []

        self._ensure_migration()
        self._load(now)

    # ── Loading ──

    def _safe_get(self, key: str) -> Any:
        try:
            return self._store.get(key)
        except StorageError as exc:
            logger.warning("leaderboard state read failed for %s: %s", key, exc)
            self.persistent = False
            if key in IDENTITY_KEYS:
                self.identity_persistent = False
            return None

    def _ensure_migration(self) -> None:
        try:
            if self._store.get(SCHEMA_KEY) == SCHEMA_VERSION:
                return
            self._store.remove(*_ALL_KEYS)
            self._store.set(SCHEMA_KEY, SCHEMA_VERSION)
        except StorageError as exc:
            logger.warning("leaderboard state migration failed: %s", exc)
            self.persistent = False
            self.identity_persistent = False

    def _load(self, now: datetime | None) -> None:
        for key, attr in ((ID_KEY, "user_id"), (ALIAS_KEY, "alias"), (SECRET_KEY, "secret")):
            value = self._safe_get(key)
            setattr(self, attr, value if isinstance(value, str) and value else None)

        raw_queue = self._safe_get(QUEUE_KEY)
        raw_queue = raw_queue if isinstance(raw_queue, list) else []
        queue: list[SubmitPayload] = []
        for item in raw_queue:
            if not validate_payload(item, now=now).ok:
                continue
            try:
                queue.append(SubmitPayload.model_validate(item))
            except ValidationError:
                continue
        self.queue = queue[-MAX_QUEUE_SIZE:]
        if len(self.queue) != len(raw_queue):
            self._notify(QUEUE_KEY)

        raw_history = self._safe_get(HISTORY_KEY)
        raw_history = raw_history if isinstance(raw_history, list) else []
        history: list[HistoryRow] = []
        for item in raw_history[-MAX_HISTORY_ROWS:]:
            try:
                row = HistoryRow.model_validate(item)
            except ValidationError:
                continue
            if parse_day(row.day) is not None:
                history.append(row)
        self.history = history

    # ── Subscription / persistence ──

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call listener(key) after every mutation. Returns an unsubscribe callable."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            listener(key)

    def _serialize(self, key: str) -> Any:
        if key == ID_KEY:
            return self.user_id
        if key == ALIAS_KEY:
            return self.alias
        if key == SECRET_KEY:
            return self.secret
        if key == QUEUE_KEY:
            return [item.to_wire() for item in self.queue]
        if key == HISTORY_KEY:
            return [row.to_wire() for row in self.history]
        raise KeyError(key)

    def _persist(self, key: str) -> None:
        try:
            value = self._serialize(key)
            if value is None:
                self._store.remove(key)
            else:
                self._store.set(key, value)
        except StorageError as exc:
            logger.warning("leaderboard state write failed for %s: %s", key, exc)
            self.persistent = False
            if key in IDENTITY_KEYS:
                self.identity_persistent = False
            return
        self.persistent = True
        if key in IDENTITY_KEYS:
            self.identity_persistent = True

    # ── Mutations ──

    def set_identity(self, user_id: str, alias: str, secret: str) -> None:
        changed = []
        if user_id != self.user_id:
            self.user_id = user_id
            changed.append(ID_KEY)
        if alias != self.alias:
            self.alias = alias
            changed.append(ALIAS_KEY)
        if secret != self.secret:
            self.secret = secret
            changed.append(SECRET_KEY)
        for key in changed:
            self._notify(key)

    def replace_queue(self, items: list[SubmitPayload]) -> None:
        """Set the queue; only the newest MAX_QUEUE_SIZE entries are kept."""
        self.queue = list(items)[-MAX_QUEUE_SIZE:]
        self._notify(QUEUE_KEY)

    def remember_row(self, row: HistoryRow) -> None:
        """Upsert a history row by (day, id)."""
        for idx, existing in enumerate(self.history):
            if existing.day == row.day and existing.id == row.id:
                self.history[idx] = row
                break
        else:
            self.history.append(row)
        self.history = self.history[-MAX_HISTORY_ROWS:]
        self._notify(HISTORY_KEY)

    def reset(self) -> None:
        """Forget identity, queue and history."""
        self.user_id = self.alias = self.secret = None
        self.queue = []
        self.history = []
        for key in (ID_KEY, ALIAS_KEY, SECRET_KEY, QUEUE_KEY, HISTORY_KEY):
            self._notify(key)
