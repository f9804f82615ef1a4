"""Use-case coordination for topic listing and administration."""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from kt.core.exceptions import AdminError, ArgumentError, BrokerError, ResolutionError
from kt.domain.models.topic import PartitionView, TopicDetail, TopicView
from kt.infra.kafka.client import BrokerClient
from kt.services.console import Console

LOG = logging.getLogger(__name__)


class TopicService:
    """Thin wrapper combining broker calls and output rules."""

    def __init__(self, client: BrokerClient, console: Console) -> None:
        self._client = client
        self._console = console

    # ------------------------------------------------------------------ #
    # Queries                                                             #
    # ------------------------------------------------------------------ #
    def list_topics(
        self,
        pattern: Optional[str] = None,
        partitions: bool = False,
        leaders: bool = False,
        replicas: bool = False,
    ) -> List[TopicView]:
        """Emit topics sorted by name, optionally filtered by a regular expression."""
        rx = re.compile(pattern) if pattern else None
        try:
            names = sorted(self._client.list_topics())
            names = [n for n in names if rx is None or rx.search(n)]
            views = [self._view(n, partitions, leaders, replicas) for n in names]
        except BrokerError as exc:
            raise ResolutionError(f"failed to list topics: {exc.message}") from exc

        for v in views:
            self._console.emit(v, exclude_none=True)
        return views

    def _view(self, name: str, partitions: bool, leaders: bool, replicas: bool) -> TopicView:
        if not (partitions or leaders or replicas):
            return TopicView(name=name)

        meta = {p["partition"]: p for p in self._client.describe_topic(name).get("partitions", [])}
        ids = sorted(meta)
        marks = self._client.watermarks(name, ids) if partitions and ids else {}
        views = []
        for pid in ids:
            pv = PartitionView(id=pid)
            if partitions:
                pv.oldest, pv.newest = marks[pid]
            if leaders:
                pv.leader = meta[pid].get("leader")
            if replicas:
                pv.replicas = list(meta[pid].get("replicas", []))
                pv.isr = list(meta[pid].get("isr", []))
            views.append(pv)
        return TopicView(name=name, partitions=views)

    # ------------------------------------------------------------------ #
    # Commands                                                            #
    # ------------------------------------------------------------------ #
    def create_topic(self, name: str, detail: TopicDetail, validate_only: bool = False) -> None:
        try:
            self._client.create_topic(name, detail, validate_only)
        except BrokerError as exc:
            raise AdminError(f"failed to create topic err={exc.message}") from exc
        LOG.info("created topic=%s validate_only=%s", name, validate_only)

    def delete_topic(self, name: str) -> None:
        try:
            self._client.delete_topic(name)
        except BrokerError as exc:
            raise AdminError(f"failed to delete topic err={exc.message}") from exc
        LOG.info("deleted topic=%s", name)


def load_topic_detail(path: str | Path) -> TopicDetail:
    """Read and validate a ``-topicdetail`` JSON file."""
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ArgumentError(f"failed to read topic detail err={exc}") from exc
    try:
        return TopicDetail.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ArgumentError(f"failed to unmarshal topic detail err={exc}") from exc
