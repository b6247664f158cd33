"""Pydantic base schema for workflow domain models."""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base model for plans, logs, checkpoints and OAuth records.

    - ``extra="forbid"``: unknown fields are rejected, so persisted JSON that
      drifts from the schema fails loudly on load.
    - ``validate_assignment=True``: status/enum fields stay typed when the
      engine mutates a loaded plan in place.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        validate_assignment=True,
    )

    def to_json_dict(self) -> Dict[str, Any]:
        """JSON-safe dict (enums as values, datetimes as ISO strings)."""
        return self.model_dump(mode="json")
