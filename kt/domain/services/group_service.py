"""Operations for consumer groups: list committed offsets, reset offsets."""
from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional

from kt.core.exceptions import BrokerError, CommitError, ResolutionError
from kt.domain.models.offsets import NO_OFFSET, ConsumerGroup, GroupOffsetsView, OffsetSpec, PartitionOffset
from kt.domain.services.resolver import PartitionResolver
from kt.infra.kafka.client import BrokerClient
from kt.services.console import Console

LOG = logging.getLogger(__name__)


class GroupOffsetManager:
    """Group-level offset inspection and rewriting against resolved partitions."""

    def __init__(self, client: BrokerClient, console: Console) -> None:
        self._client = client
        self._console = console
        self._resolver = PartitionResolver(client)

    # ------------------------------------------------------------------ #
    # Queries                                                             #
    # ------------------------------------------------------------------ #
    def select_groups(self, group: Optional[str] = None, pattern: Optional[str] = None) -> List[str]:
        """An explicit group wins; otherwise broker groups matching ``pattern``; otherwise none."""
        if group:
            return [group]
        if pattern is None:
            return []
        rx = re.compile(pattern)
        try:
            names = self._client.list_groups()
        except BrokerError as exc:
            raise ResolutionError(f"failed to list consumer groups: {exc.message}") from exc
        return [g for g in sorted(names) if rx.search(g)]

    def list_offsets(
        self,
        topic: str,
        groups: Iterable[str],
        partitions: Optional[Iterable[int]] = None,
    ) -> List[GroupOffsetsView]:
        """Emit committed offsets and lag per partition for each group."""
        parts = self._resolve(topic, partitions)
        groups = list(groups)
        if not groups:
            return []

        try:
            marks = self._client.watermarks(topic, parts)
        except BrokerError as exc:
            raise ResolutionError(f"failed to read offsets for topic={topic}: {exc.message}") from exc

        views = []
        for name in groups:
            grp = ConsumerGroup(name=name, topic=topic)
            committed = self._committed(grp.name, grp.topic, parts)
            view = GroupOffsetsView(
                name=grp.name,
                topic=grp.topic,
                offsets=[_partition_offset(p, committed.get(p), marks[p][1]) for p in parts],
            )
            self._console.emit(view, exclude_none=True)
            views.append(view)
        return views

    # ------------------------------------------------------------------ #
    # Commands                                                            #
    # ------------------------------------------------------------------ #
    def reset(
        self,
        group: str,
        topic: str,
        target: OffsetSpec,
        partitions: Optional[Iterable[int]] = None,
    ) -> GroupOffsetsView:
        """Commit ``target`` for every selected partition.

        Absolute targets are committed as given, without checking them
        against the log range; a bad target surfaces at the next consume.
        ``oldest``/``newest`` targets are resolved per partition first.
        """
        grp = ConsumerGroup(name=group, topic=topic)
        parts = self._resolve(grp.topic, partitions)

        marks: Dict[int, tuple] = {}
        if target.needs_watermarks:
            try:
                marks = self._client.watermarks(topic, parts)
            except BrokerError as exc:
                raise ResolutionError(f"failed to read offsets for topic={topic}: {exc.message}") from exc
        offsets = {p: target.resolve(*marks[p]) if marks else target.resolve() for p in parts}

        try:
            self._client.commit(group, topic, offsets)
        except BrokerError as exc:
            raise CommitError(group, topic, exc.message, parts) from exc
        LOG.debug("reset group=%s topic=%s offsets=%s", group, topic, offsets)

        view = GroupOffsetsView(
            name=group,
            topic=topic,
            offsets=[PartitionOffset(partition=p, offset=offsets[p]) for p in parts],
        )
        self._console.emit(view, exclude_none=True)
        return view

    # ------------------------------------------------------------------ #
    # Helpers                                                             #
    # ------------------------------------------------------------------ #
    def _resolve(self, topic: str, partitions: Optional[Iterable[int]]) -> List[int]:
        parts = self._resolver.resolve(topic, partitions)
        self._console.diag(f"found partitions={_fmt_ids(parts)} for topic={topic}")
        return parts

    def _committed(self, group: str, topic: str, parts: List[int]) -> Dict[int, Optional[int]]:
        try:
            return self._client.fetch_committed(group, topic, parts)
        except BrokerError as exc:
            raise ResolutionError(f"failed to fetch offsets for group={group} topic={topic}: {exc.message}") from exc


def _partition_offset(partition: int, committed: Optional[int], high_water: int) -> PartitionOffset:
    if committed is None or committed < 0:
        return PartitionOffset(partition=partition, offset=NO_OFFSET)
    return PartitionOffset(partition=partition, offset=committed, lag=max(0, high_water - committed))


def _fmt_ids(ids: List[int]) -> str:
    # space separated, e.g. [0 1 2]
    return "[" + " ".join(str(i) for i in ids) + "]"
