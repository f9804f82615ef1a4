"""Shared fixtures: an in-memory broker standing in for a Kafka cluster."""
from __future__ import annotations

import io
import threading
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

import pytest

from kt.core.config import Settings
from kt.core.exceptions import BrokerError
from kt.domain.models.message import Message
from kt.domain.models.topic import TopicDetail
from kt.services.console import Console


class FakeStream:
    """Reads one partition of a ``FakeBroker``; blocks up to the poll timeout for new data."""

    def __init__(self, broker: "FakeBroker", topic: str, partition: int, offset: int) -> None:
        self._broker = broker
        self._topic = topic
        self._partition = partition
        self.position = offset
        self.closed = False

    def poll(self, timeout_sec: float) -> List[Message]:
        b = self._broker
        with b.cond:
            if self._partition in b.fail_fetch:
                raise BrokerError(f"poll: NotLeaderForPartitionError partition={self._partition}")
            log = b.logs[self._topic][self._partition]
            if self.position < b.log_start or self.position > len(log):
                raise BrokerError(f"poll: OffsetOutOfRangeError offset={self.position}")
            if self.position == len(log) and timeout_sec > 0:
                b.cond.wait(timeout_sec)
            batch = log[self.position:]
            self.position += len(batch)
            return list(batch)

    def close(self) -> None:
        self.closed = True


class FakeBroker:
    """In-memory ``BrokerClient``: topics, partition logs and group commits."""

    def __init__(self, topics: Optional[Mapping[str, int]] = None) -> None:
        self.cond = threading.Condition()
        self.logs: Dict[str, Dict[int, List[Message]]] = {}
        self.commits: Dict[Tuple[str, str], Dict[int, int]] = {}
        self.configs: Dict[str, TopicDetail] = {}
        self.streams: List[FakeStream] = []
        self.log_start = 0
        self.closed = False
        # failure injection
        self.fail_fetch: Set[int] = set()
        self.fail_open: Set[int] = set()
        self.fail_produce_after: Optional[int] = None
        self.fail_commit = False
        self.fail_metadata = False
        self.produced = 0
        for name, n in (topics or {}).items():
            self.add_topic(name, n)

    # ---------- test helpers ----------
    def add_topic(self, name: str, partitions: int) -> None:
        self.logs[name] = {p: [] for p in range(partitions)}

    def append(self, topic: str, partition: int, value: Optional[str], key: Optional[str] = None) -> int:
        with self.cond:
            log = self.logs[topic][partition]
            msg = Message(
                partition=partition,
                offset=len(log),
                key=key.encode() if key is not None else None,
                value=value.encode() if value is not None else None,
                timestamp=datetime.now(timezone.utc),
            )
            log.append(msg)
            self.cond.notify_all()
            return msg.offset

    # ---------- BrokerClient ----------
    def list_partitions(self, topic: str) -> Set[int]:
        if self.fail_metadata:
            raise BrokerError("list_partitions: NoBrokersAvailable")
        return set(self.logs.get(topic, {}))

    def watermarks(self, topic: str, partitions: Iterable[int]) -> Dict[int, Tuple[int, int]]:
        with self.cond:
            return {p: (self.log_start, len(self.logs[topic][p])) for p in partitions}

    def fetch(self, topic: str, partition: int, offset: int) -> FakeStream:
        if partition in self.fail_open:
            raise BrokerError(f"fetch: UnknownTopicOrPartitionError partition={partition}")
        stream = FakeStream(self, topic, partition, offset)
        self.streams.append(stream)
        return stream

    def produce(self, topic: str, partition: int, key: Optional[bytes], value: Optional[bytes]) -> int:
        if self.fail_produce_after is not None and self.produced >= self.fail_produce_after:
            raise BrokerError("produce: KafkaTimeoutError: Batch for TopicPartition expired")
        self.produced += 1
        return self.append(
            topic, partition,
            value.decode() if value is not None else None,
            key.decode() if key is not None else None,
        )

    def commit(self, group: str, topic: str, offsets: Mapping[int, int]) -> None:
        if self.fail_commit:
            raise BrokerError("commit: CommitFailedError")
        self.commits.setdefault((group, topic), {}).update(offsets)

    def fetch_committed(self, group: str, topic: str, partitions: Iterable[int]) -> Dict[int, Optional[int]]:
        stored = self.commits.get((group, topic), {})
        return {p: stored.get(p) for p in partitions}

    def list_topics(self) -> List[str]:
        return list(self.logs) + ["__consumer_offsets"]

    def describe_topic(self, topic: str) -> dict:
        return {
            "topic": topic,
            "partitions": [
                {"partition": p, "leader": 1, "replicas": [1, 2], "isr": [1]}
                for p in self.logs[topic]
            ],
        }

    def list_groups(self) -> List[str]:
        return sorted({g for g, _ in self.commits})

    def create_topic(self, name: str, detail: TopicDetail, validate_only: bool) -> None:
        if name in self.logs:
            raise BrokerError(f"create_topic: TopicAlreadyExistsError: {name}")
        if not validate_only:
            self.add_topic(name, detail.num_partitions)
            self.configs[name] = detail

    def delete_topic(self, name: str) -> None:
        if name not in self.logs:
            raise BrokerError(f"delete_topic: UnknownTopicOrPartitionError: {name}")
        del self.logs[name]

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker({"kt-test": 1})


@pytest.fixture
def settings() -> Settings:
    return Settings(brokers="fake:9092", poll_interval_ms=20, merge_buffer=16)


@pytest.fixture
def out() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def err() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def console(out, err) -> Console:
    return Console(out=out, err=err)


def lines(buf: io.StringIO) -> List[str]:
    return [line for line in buf.getvalue().splitlines() if line.strip()]
