"""Producer input records and per-partition summaries."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt


class InputRecord(BaseModel):
    """One JSON input line before key/value decoding. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    key: Optional[str] = None
    value: Optional[str] = None
    partition: Optional[StrictInt] = None


class ProduceRequest(BaseModel):
    """A decoded record ready to send; ``line`` is its 1-based input position."""

    model_config = ConfigDict(frozen=True)

    line: int = Field(..., ge=1)
    key: bytes | None = None
    value: bytes | None = None
    partition: int | None = None


class ProduceSummary(BaseModel):
    """Aggregate of one run for one partition."""

    model_config = ConfigDict(populate_by_name=True)

    partition: int
    count: int = Field(..., ge=1)
    start_offset: int = Field(..., ge=0, alias="startOffset")
