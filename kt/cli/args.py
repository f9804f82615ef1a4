"""Immutable, validated argument models, one per sub-command."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kt.core.config import Settings, load_settings
from kt.domain.models.offsets import OffsetSpec
from kt.domain.models.topic import TopicDetail
from kt.services.codec import ENCODINGS


class CommonArgs(BaseModel):
    """Flags every sub-command accepts."""

    model_config = ConfigDict(frozen=True)

    brokers: Optional[str] = None
    verbose: bool = False
    version: Optional[str] = None
    tls_ca: Optional[str] = None
    tls_cert: Optional[str] = None
    tls_cert_key: Optional[str] = None
    pretty: bool = False

    def settings(self, **overrides) -> Settings:
        """Flags win over ``KT_*`` environment values, which win over defaults."""
        return load_settings(
            brokers=self.brokers or None,
            kafka_api_version=self.version or None,
            tls_ca=self.tls_ca or None,
            tls_cert=self.tls_cert or None,
            tls_cert_key=self.tls_cert_key or None,
            **overrides,
        )


class ProduceArgs(CommonArgs):
    topic: str = Field(..., min_length=1)
    partition: Optional[int] = Field(default=None, ge=0)
    literal: bool = False
    decode_key: str = "string"
    decode_value: str = "string"
    partitioner: str = "roundrobin"
    timeout: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _check_encodings(self):
        for name in (self.decode_key, self.decode_value):
            if name not in ENCODINGS:
                raise ValueError(f"unsupported encoding {name!r}, expected one of {', '.join(ENCODINGS)}")
        return self


class ConsumeArgs(CommonArgs):
    topic: str = Field(..., min_length=1)
    group: Optional[str] = None
    timeout: Optional[float] = Field(default=None, ge=0)
    offset: Optional[OffsetSpec] = None
    partitions: Optional[List[int]] = None
    encode_key: str = "string"
    encode_value: str = "string"

    @model_validator(mode="after")
    def _check_encodings(self):
        for name in (self.encode_key, self.encode_value):
            if name not in ENCODINGS:
                raise ValueError(f"unsupported encoding {name!r}, expected one of {', '.join(ENCODINGS)}")
        return self


class GroupArgs(CommonArgs):
    topic: str = Field(..., min_length=1)
    group: Optional[str] = None
    filter: Optional[str] = None
    reset: Optional[OffsetSpec] = None
    partitions: Optional[List[int]] = None

    @model_validator(mode="after")
    def _reset_needs_group(self):
        if self.reset is not None and not self.group:
            raise ValueError("-reset requires -group")
        return self


class TopicArgs(CommonArgs):
    filter: Optional[str] = None
    partitions: bool = False
    leaders: bool = False
    replicas: bool = False


class AdminArgs(CommonArgs):
    create_topic: Optional[str] = None
    topic_detail: Optional[TopicDetail] = None
    validate_only: bool = False
    delete_topic: Optional[str] = None

    @model_validator(mode="after")
    def _one_operation(self):
        if not self.create_topic and not self.delete_topic:
            raise ValueError("need to supply at least one sub-command of: createtopic, deletetopic")
        if self.create_topic and self.topic_detail is None:
            raise ValueError("-createtopic requires -topicdetail")
        return self
