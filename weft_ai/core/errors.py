"""Shared error taxonomy.

Every error raised across a Weft-AI component boundary derives from
``WeftError``. Each carries a human-readable message and a short machine
code so callers (HTTP handlers, tests, log processors) can branch on the
failure class without matching message text.

- ``ConfigurationError``: a required credential or setting is missing.
- ``InvalidStateError``: an operation is not permitted in the plan's current
  status, or an OAuth state token failed validation.
- ``InputValidationError``: caller-supplied input is missing or malformed.
- ``TerminalError``: an unrecoverable failure that ends a plan.

Tool-protocol failures (``ProtocolError``, ``TransportError``) live in
``weft_ai.mcp_client.errors`` and also derive from ``WeftError``.
"""

from __future__ import annotations

from typing import Optional


class WeftError(Exception):
    """Base class for all Weft-AI errors."""

    default_code = "WEFT_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class ConfigurationError(WeftError):
    default_code = "CONFIGURATION_ERROR"


class InvalidStateError(WeftError):
    default_code = "INVALID_STATE"


class InputValidationError(WeftError):
    default_code = "INVALID_INPUT"


class TerminalError(WeftError):
    default_code = "WORKFLOW_FAILED"
