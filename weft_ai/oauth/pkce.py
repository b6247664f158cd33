"""PKCE helpers (RFC 7636, S256 only)."""

from __future__ import annotations

import base64
import hashlib
import secrets


def generate_code_verifier(num_bytes: int = 32) -> str:
    # 32 random bytes -> 43 characters, the minimum verifier length
    return base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).rstrip(b"=").decode("ascii")


def code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_nonce() -> str:
    return secrets.token_urlsafe(16)
