"""Consumer-group offset DTOs."""
from __future__ import annotations

import re
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

# Kafka reports "no committed offset" as -1.
NO_OFFSET = -1


class ConsumerGroup(BaseModel):
    """A durable cursor set stored by the broker for (name, topic)."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)


class PartitionOffset(BaseModel):
    """Committed position of one partition, or a reset target."""

    partition: int = Field(..., ge=0)
    offset: int = Field(..., ge=NO_OFFSET)
    lag: int | None = Field(default=None, ge=0)


class GroupOffsetsView(BaseModel):
    """Unit emitted by `group` listing and reset."""

    name: str
    topic: str
    offsets: List[PartitionOffset] = Field(default_factory=list)


_OFFSET_RE = re.compile(r"^(?:(?P<base>oldest|newest)(?:(?P<sign>[+-])(?P<delta>\d+))?|(?P<absolute>\d+))$")


class OffsetSpec(BaseModel):
    """Start position expression: ``oldest``, ``newest``, ``N``, ``oldest+N`` or ``newest-N``."""

    model_config = ConfigDict(frozen=True)

    base: Literal["oldest", "newest", "absolute"]
    delta: int = 0

    @classmethod
    def parse(cls, text: str) -> "OffsetSpec":
        m = _OFFSET_RE.match(text.strip())
        if not m:
            raise ValueError(f"invalid offset {text!r}, expected oldest, newest, N, oldest+N or newest-N")
        if m.group("absolute") is not None:
            return cls(base="absolute", delta=int(m.group("absolute")))
        delta = int(m.group("delta") or 0)
        if m.group("sign") == "-":
            delta = -delta
        return cls(base=m.group("base"), delta=delta)

    @property
    def needs_watermarks(self) -> bool:
        return self.base != "absolute"

    def resolve(self, oldest: int = 0, newest: int = 0) -> int:
        """Absolute offsets pass through unchecked; relative ones are clamped to [oldest, newest]."""
        if self.base == "absolute":
            return self.delta
        start = oldest if self.base == "oldest" else newest
        return min(max(start + self.delta, oldest), newest)

    def __str__(self) -> str:
        if self.base == "absolute":
            return str(self.delta)
        return f"{self.base}{self.delta:+d}" if self.delta else self.base
