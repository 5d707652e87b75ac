"""Pseudonymous identity and submission payload builder.

The id and secret are minted once per device and never regenerated. The
alias is not user-chosen: it is always recomputed from the id, and a stored
alias that disagrees is overwritten.

fingerprint = sha256(id + "|" + secret)
checksum    = sha256(canonical_json(payload without checksum) + "|" + secret)

The checksum binds a payload to the holder of the secret and detects
tampering in transit. It is not proof against a client that controls its
own secret; such a client can always inflate its own scores.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from noorboard.client.state import LeaderboardState
from noorboard.leaderboard.policy import (
    PAYLOAD_VERSION,
    canonical_alias,
    format_timestamp,
    sha256_hex,
)
from noorboard.leaderboard.schemas import PayloadIdentity, ScoreBundle, SubmitPayload


@dataclass(frozen=True)
class Identity:
    id: str
    alias: str
    secret: str


FALLBACK_IDENTITY = Identity(id="anon_fallback", alias=canonical_alias("anon_fallback"), secret="fallback_secret")


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
        if number == 0:
            return out


def random_token(prefix: str) -> str:
    """Opaque, collision-improbable token such as 'anon_3f9c...lx2k9q1'."""
    return f"{prefix}_{secrets.token_hex(10)}{_base36(int(time.time() * 1000))}"


def get_or_create_identity(state: LeaderboardState) -> Identity:
    """Load the device identity, minting id/secret on first use.

    Falls back to a fixed placeholder identity only while the identity keys
    cannot be stored; failures on queue or history keys do not affect it.
    """
    user_id = state.user_id or random_token("anon")
    secret = state.secret or random_token("sec")
    state.set_identity(user_id, canonical_alias(user_id), secret)
    if not state.identity_persistent:
        return FALLBACK_IDENTITY
    return Identity(id=user_id, alias=canonical_alias(user_id), secret=secret)


def fingerprint_for(identity: Identity) -> str:
    return sha256_hex(f"{identity.id}|{identity.secret}")


def build_submit_payload(
    state: LeaderboardState,
    day: str,
    scores: ScoreBundle | dict[str, Any],
    now: datetime | None = None,
) -> SubmitPayload:
    """Sanitize a live score snapshot and sign it into a SubmitPayload."""
    identity = get_or_create_identity(state)
    clean = scores if isinstance(scores, ScoreBundle) else ScoreBundle.model_validate(scores)
    generated_at = format_timestamp(now or datetime.now(timezone.utc))

    unsigned = SubmitPayload(
        v=PAYLOAD_VERSION,
        generated_at=generated_at,
        day=day,
        identity=PayloadIdentity(
            id=identity.id,
            alias=canonical_alias(identity.id),
            fingerprint=fingerprint_for(identity),
        ),
        scores=clean,
        checksum="",
    )
    checksum = sha256_hex(f"{unsigned.pre_checksum_json()}|{identity.secret}")
    return unsigned.model_copy(update={"checksum": checksum})
