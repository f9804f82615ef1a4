"""Partition discovery shared by produce, consume and group."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from kt.core.exceptions import BrokerError, ResolutionError, TopicNotFound
from kt.infra.kafka.client import BrokerClient

LOG = logging.getLogger(__name__)


class PartitionResolver:
    """Turns a topic (plus an optional partition filter) into ascending partition ids."""

    def __init__(self, client: BrokerClient) -> None:
        self._client = client

    def resolve(self, topic: str, only: Optional[Iterable[int]] = None) -> List[int]:
        """Return the topic's partitions, ascending and duplicate-free.

        Raises ``TopicNotFound`` when the broker knows no partitions for the
        topic and ``ResolutionError`` when the lookup fails or ``only`` names
        partitions the topic does not have. Never returns an empty list.
        """
        try:
            found = self._client.list_partitions(topic)
        except BrokerError as exc:
            raise ResolutionError(f"failed to read partitions for topic={topic}: {exc.message}") from exc
        if not found:
            raise TopicNotFound(topic)

        partitions = sorted(set(found))
        if only is not None:
            wanted = sorted(set(only))
            missing = [p for p in wanted if p not in found]
            if missing:
                raise ResolutionError(f"partitions {missing} not found for topic={topic}, available={partitions}")
            partitions = wanted
        if not partitions:
            raise ResolutionError(f"no partitions selected for topic={topic}")
        LOG.debug("resolved topic=%s partitions=%s", topic, partitions)
        return partitions
