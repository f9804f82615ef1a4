"""Kafka Admin façade built on kafka-python."""
from __future__ import annotations

import logging

from kafka.admin import KafkaAdminClient, NewTopic  # kafka-python

from kt.domain.models.topic import TopicDetail

LOG = logging.getLogger(__name__)


class KafkaAdminFacade:
    """Encapsulates admin operations against a Kafka cluster."""

    def __init__(self, timeout_ms: int, **client_kwargs) -> None:
        self._timeout_ms = timeout_ms
        self._client = KafkaAdminClient(**client_kwargs)

    # ---------- Topics -----------------------------------------------------

    def list_topics(self) -> list[str]:
        """Return the names of all topics, internal ones included."""
        return list(self._client.list_topics())

    def describe_topic(self, name: str) -> dict:
        """Return ``{"topic": ..., "partitions": [{"partition", "leader", "replicas", "isr"}, ...]}``."""
        return self._client.describe_topics([name])[0]

    def create_topic(self, name: str, detail: TopicDetail, validate_only: bool = False) -> None:
        """Create a topic; the broker rejects names that already exist.

        Parameters
        ----------
        name : str
            Topic name.
        detail : TopicDetail
            Partition count, replication factor, optional replica assignment
            and topic configuration.
        validate_only : bool
            Ask the controller to validate the request without creating it.
        """
        new_topic = NewTopic(
            name=name,
            num_partitions=detail.num_partitions,
            replication_factor=detail.replication_factor,
            replica_assignments=detail.replica_assignment or None,
            topic_configs={k: v for k, v in detail.config_entries.items() if v is not None} or None,
        )
        LOG.debug("create topic=%s detail=%s validate_only=%s", name, detail, validate_only)
        self._client.create_topics([new_topic], timeout_ms=self._timeout_ms, validate_only=validate_only)

    def delete_topic(self, name: str) -> None:
        LOG.debug("delete topic=%s", name)
        self._client.delete_topics([name], timeout_ms=self._timeout_ms)

    # ---------- Consumer groups ---------------------------------------------

    def list_groups(self) -> list[str]:
        # kafka-python returns list[tuple[group_id, protocol_type]]
        return sorted({gid for gid, _ in self._client.list_consumer_groups()})

    def close(self) -> None:
        self._client.close()
