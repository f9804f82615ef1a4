"""Consumed message and its line-delimited output record."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    """One record read from a partition; immutable once fetched."""

    model_config = ConfigDict(frozen=True)

    partition: int = Field(..., ge=0)
    offset: int = Field(..., ge=0)
    key: bytes | None = None
    value: bytes | None = None
    timestamp: datetime | None = None

    @classmethod
    def from_record(cls, partition: int, offset: int, key, value, timestamp_ms: int | None) -> "Message":
        """Build from the raw fields of a client library record (timestamp in epoch ms)."""
        ts = None
        if timestamp_ms is not None and timestamp_ms >= 0:
            ts = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
        return cls(partition=partition, offset=offset, key=key, value=value, timestamp=ts)


class MessageRecord(BaseModel):
    """Output shape of `consume`: one JSON object per line."""

    partition: int
    offset: int
    key: Optional[str] = None
    value: Optional[str] = None
    timestamp: Optional[datetime] = None

    @classmethod
    def render(
        cls,
        msg: Message,
        encode_key: Callable[[bytes | None], str | None],
        encode_value: Callable[[bytes | None], str | None],
    ) -> "MessageRecord":
        return cls(
            partition=msg.partition,
            offset=msg.offset,
            key=encode_key(msg.key),
            value=encode_value(msg.value),
            timestamp=msg.timestamp,
        )
