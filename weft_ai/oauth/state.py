"""Signed OAuth ``state`` tokens.

A state token is ``<payload>.<signature>``, both URL-safe base64 without
padding. The payload is the JSON form of ``OAuthState``; the signature is
HMAC-SHA256 over the encoded payload. Decoding checks the signature in
constant time before looking at the payload, then rejects tokens older than
the configured max age (or dated in the future).
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import Optional

from pydantic import ValidationError

from weft_ai.agent_core.schemas.base import BaseSchema
from weft_ai.core.errors import InvalidStateError

DEFAULT_MAX_AGE_SECONDS = 600


class OAuthState(BaseSchema):
    project_id: str
    server_id: Optional[str] = None
    nonce: str
    timestamp: int  # epoch milliseconds


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sign(data: str, secret: str) -> str:
    return _b64encode(hmac.new(secret.encode("utf-8"), data.encode("ascii"), hashlib.sha256).digest())


def _now_ms() -> int:
    return int(time.time() * 1000)


def encode_state(
    *,
    project_id: str,
    nonce: str,
    secret: str,
    server_id: Optional[str] = None,
    now_ms: Optional[int] = None,
) -> str:
    payload = OAuthState(
        project_id=project_id,
        server_id=server_id,
        nonce=nonce,
        timestamp=_now_ms() if now_ms is None else now_ms,
    )
    encoded = _b64encode(payload.model_dump_json(exclude_none=True).encode("utf-8"))
    return f"{encoded}.{_sign(encoded, secret)}"


def decode_state(
    token: str,
    *,
    secret: str,
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
    now_ms: Optional[int] = None,
) -> OAuthState:
    """
    Verify and decode a state token.

    Raises:
        InvalidStateError: Malformed token, bad signature, or expired.
    """
    parts = token.split(".")
    if len(parts) != 2 or not all(parts):
        raise InvalidStateError("Malformed OAuth state", code="INVALID_OAUTH_STATE")
    encoded, signature = parts
    if not hmac.compare_digest(signature, _sign(encoded, secret)):
        raise InvalidStateError("OAuth state signature mismatch", code="INVALID_OAUTH_STATE")

    try:
        state = OAuthState.model_validate_json(_b64decode(encoded))
    except (ValueError, ValidationError) as e:
        raise InvalidStateError(f"Malformed OAuth state payload: {e}", code="INVALID_OAUTH_STATE") from e

    age_ms = (_now_ms() if now_ms is None else now_ms) - state.timestamp
    if age_ms < 0 or age_ms > max_age_seconds * 1000:
        raise InvalidStateError("OAuth state expired", code="OAUTH_STATE_EXPIRED")
    return state
