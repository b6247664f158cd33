"""Pydantic base schema utilities for MCP wire models.

Provides ``WireSchema``: camelCase aliases for JSON interop, and tolerant of
extra members so server-specific extensions (``_meta``, annotations) do not
break decoding.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


def _to_camel(s: str) -> str:
    """Convert snake_case to camelCase for JSON aliasing."""
    parts = s.split("_")
    return parts[0] + "".join(p.capitalize() or "_" for p in parts[1:])


class WireSchema(BaseModel):
    """Shared base for all MCP wire models.

    - Ignores unknown members sent by servers
    - Enables populate_by_name for using either snake_case or camelCase
    - Uses a snake->camel alias generator for JSON interop
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        alias_generator=_to_camel,
    )
