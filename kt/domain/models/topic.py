"""Topic listing views and the admin topic-detail document."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class PartitionView(BaseModel):
    id: int
    oldest: Optional[int] = None
    newest: Optional[int] = None
    leader: Optional[int] = None
    replicas: Optional[List[int]] = None
    isr: Optional[List[int]] = None


class TopicView(BaseModel):
    """Output shape of `topic`; partition detail only when requested."""

    name: str
    partitions: Optional[List[PartitionView]] = None


class TopicDetail(BaseModel):
    """Topic creation document read from the ``-topicdetail`` JSON file.

    PascalCase field names are the canonical spelling
    (``NumPartitions``, ``ReplicationFactor``, ...); camelCase and snake_case
    spellings are accepted too.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    num_partitions: int = Field(
        ...,
        validation_alias=AliasChoices("NumPartitions", "numPartitions", "num_partitions"),
    )
    replication_factor: int = Field(
        ...,
        validation_alias=AliasChoices("ReplicationFactor", "replicationFactor", "replication_factor"),
    )
    replica_assignment: Dict[int, List[int]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("ReplicaAssignment", "replicaAssignment", "replica_assignment"),
    )
    config_entries: Dict[str, Optional[str]] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("ConfigEntries", "configEntries", "config_entries"),
    )

    @field_validator("num_partitions", "replication_factor")
    @classmethod
    def _positive_or_default(cls, v: int) -> int:
        # -1 lets the broker apply its default (required with a replica assignment)
        if v == 0 or v < -1:
            raise ValueError("must be positive, or -1 for the broker default")
        return v

    @field_validator("config_entries", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or {}
