"""Pydantic models for the leaderboard wire format.

Field names follow the wire (camelCase) through aliases; Python code uses
snake_case attributes.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from noorboard.leaderboard.policy import BOARD_SCORE_KEYS, canonical_json, parse_day, sanitize_scores


class ScoreBundle(BaseModel):
    """Per-metric scores. Input is always floor-and-clamped on construction."""

    model_config = ConfigDict(populate_by_name=True)

    global_: int = Field(0, alias="global")
    dhikr: int = 0
    quran: int = 0
    prayers: int = 0
    tasbeeh_daily: int = Field(0, alias="tasbeehDaily")
    sections: dict[str, int] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _sanitize(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            # Accept snake_case keys from Python callers as well as the wire form.
            wire = dict(data)
            if "global_" in wire and "global" not in wire:
                wire["global"] = wire.pop("global_")
            if "tasbeeh_daily" in wire and "tasbeehDaily" not in wire:
                wire["tasbeehDaily"] = wire.pop("tasbeeh_daily")
            return sanitize_scores(wire)
        if data is None:
            return sanitize_scores({})
        return data

    def for_board(self, board: str, section_id: str | None = None) -> int:
        if board == "section":
            return self.sections.get(section_id or "", 0)
        return int(self.to_wire()[BOARD_SCORE_KEYS[board]])

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PayloadIdentity(BaseModel):
    id: str
    alias: str
    fingerprint: str


class SubmitPayload(BaseModel):
    """A submission as sent over the wire and stored in the local queue."""

    model_config = ConfigDict(populate_by_name=True)

    v: Literal[1] = 1
    generated_at: str = Field(alias="generatedAt")
    day: str
    identity: PayloadIdentity
    scores: ScoreBundle
    checksum: str

    @property
    def day_date(self) -> date:
        parsed = parse_day(self.day)
        if parsed is None:
            msg = f"invalid day: {self.day!r}"
            raise ValueError(msg)
        return parsed

    def to_wire(self) -> dict[str, Any]:
        return {
            "v": self.v,
            "generatedAt": self.generated_at,
            "day": self.day,
            "identity": self.identity.model_dump(),
            "scores": self.scores.to_wire(),
            "checksum": self.checksum,
        }

    def pre_checksum_json(self) -> str:
        """Canonical serialization of everything except the checksum itself."""
        wire = self.to_wire()
        wire.pop("checksum")
        return canonical_json(wire)


# ── Responses ──


class LeaderboardRow(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    board: str
    score: int
    day: str | None = None
    section_id: str | None = Field(None, alias="sectionId")


class LeaderboardResponse(BaseModel):
    rows: list[LeaderboardRow]


class SubmitResponse(BaseModel):
    ok: bool = True
    deduped: bool | None = None


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
