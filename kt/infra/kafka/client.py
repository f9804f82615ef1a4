"""Narrow broker capability interface and its kafka-python implementation."""
from __future__ import annotations

import functools
import logging
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Set, Tuple

from kafka import KafkaConsumer, KafkaProducer, TopicPartition
from kafka.errors import KafkaError

from kt.core.config import Settings
from kt.core.exceptions import BrokerError
from kt.domain.models.message import Message
from kt.domain.models.topic import TopicDetail
from kt.infra.kafka.admin import KafkaAdminFacade

LOG = logging.getLogger(__name__)


class PartitionStream(Protocol):
    """Sequential reader of one partition, positioned at construction."""

    def poll(self, timeout_sec: float) -> List[Message]:
        ...

    def close(self) -> None:
        ...


class BrokerClient(Protocol):
    """Everything kt needs from a Kafka cluster.

    Implementations raise ``BrokerError`` for any client or network failure.
    """

    def list_partitions(self, topic: str) -> Set[int]:
        ...

    def watermarks(self, topic: str, partitions: Iterable[int]) -> Dict[int, Tuple[int, int]]:
        """``{partition: (oldest, newest)}`` where newest is the high-water mark."""
        ...

    def fetch(self, topic: str, partition: int, offset: int) -> PartitionStream:
        ...

    def produce(self, topic: str, partition: int, key: Optional[bytes], value: Optional[bytes]) -> int:
        """Send synchronously and return the assigned offset."""
        ...

    def commit(self, group: str, topic: str, offsets: Mapping[int, int]) -> None:
        ...

    def fetch_committed(self, group: str, topic: str, partitions: Iterable[int]) -> Dict[int, Optional[int]]:
        ...

    def list_topics(self) -> List[str]:
        ...

    def describe_topic(self, topic: str) -> dict:
        ...

    def list_groups(self) -> List[str]:
        ...

    def create_topic(self, name: str, detail: TopicDetail, validate_only: bool) -> None:
        ...

    def delete_topic(self, name: str) -> None:
        ...

    def close(self) -> None:
        ...


def _broker_errors(fn):
    """Normalise kafka-python and socket failures into ``BrokerError``."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (KafkaError, OSError) as exc:
            raise BrokerError(f"{fn.__name__}: {exc.__class__.__name__}: {exc}") from exc

    return wrapper


class KafkaPartitionStream:
    """One dedicated KafkaConsumer per partition; kafka-python consumers are not thread-safe."""

    def __init__(self, consumer: KafkaConsumer, tp: TopicPartition) -> None:
        self._consumer = consumer
        self._tp = tp

    @_broker_errors
    def poll(self, timeout_sec: float) -> List[Message]:
        batch = self._consumer.poll(timeout_ms=max(0, int(timeout_sec * 1000)))
        return [
            Message.from_record(r.partition, r.offset, r.key, r.value, r.timestamp)
            for r in batch.get(self._tp, [])
        ]

    def close(self) -> None:
        try:
            self._consumer.close(autocommit=False)
        except (KafkaError, OSError):
            LOG.debug("closing stream for %s failed", self._tp, exc_info=True)


class KafkaBrokerClient:
    """
    Lazy adapter around kafka-python Consumer, Producer and Admin APIs.
    Avoids network work until a capability is used.
    """

    def __init__(self, settings: Settings, command: str) -> None:
        self.settings = settings
        self.client_id = settings.client_id(command)
        self._meta: KafkaConsumer | None = None
        self._producer: KafkaProducer | None = None
        self._admin: KafkaAdminFacade | None = None

    # ---------- bootstrap common kwargs ----------
    def _common_kwargs(self) -> dict:
        s = self.settings
        kw = dict(
            bootstrap_servers=s.broker_list,
            client_id=self.client_id,
            request_timeout_ms=s.request_timeout_ms,
        )
        if s.api_version:
            kw["api_version"] = s.api_version
        if s.tls_enabled:
            kw.update(
                security_protocol="SSL",
                ssl_cafile=s.tls_ca,
                ssl_certfile=s.tls_cert,
                ssl_keyfile=s.tls_cert_key,
            )
        return kw

    def _consumer(self, **kw) -> KafkaConsumer:
        return KafkaConsumer(**{**self._common_kwargs(), "enable_auto_commit": False, **kw})

    def _ensure_meta(self) -> KafkaConsumer:
        if self._meta is None:
            self._meta = self._consumer()
        return self._meta

    def _ensure_producer(self) -> KafkaProducer:
        if self._producer is None:
            self._producer = KafkaProducer(acks=1, **self._common_kwargs())
        return self._producer

    def _ensure_admin(self) -> KafkaAdminFacade:
        if self._admin is None:
            self._admin = KafkaAdminFacade(self.settings.request_timeout_ms, **self._common_kwargs())
        return self._admin

    # ---------- Partitions / offsets ----------
    @_broker_errors
    def list_partitions(self, topic: str) -> Set[int]:
        return set(self._ensure_meta().partitions_for_topic(topic) or ())

    @_broker_errors
    def watermarks(self, topic: str, partitions: Iterable[int]) -> Dict[int, Tuple[int, int]]:
        tps = [TopicPartition(topic, p) for p in partitions]
        meta = self._ensure_meta()
        start = meta.beginning_offsets(tps)
        end = meta.end_offsets(tps)
        return {tp.partition: (start[tp], end[tp]) for tp in tps}

    @_broker_errors
    def fetch(self, topic: str, partition: int, offset: int) -> KafkaPartitionStream:
        tp = TopicPartition(topic, partition)
        # "none": an out-of-range position must fail the fetch, not silently reset
        c = self._consumer(auto_offset_reset="none")
        c.assign([tp])
        c.seek(tp, offset)
        return KafkaPartitionStream(c, tp)

    # ---------- Produce ----------
    @_broker_errors
    def produce(self, topic: str, partition: int, key: Optional[bytes], value: Optional[bytes]) -> int:
        future = self._ensure_producer().send(topic, value=value, key=key, partition=partition)
        return future.get(timeout=self.settings.produce_timeout_sec).offset

    # ---------- Consumer groups ----------
    @_broker_errors
    def commit(self, group: str, topic: str, offsets: Mapping[int, int]) -> None:
        tps = {TopicPartition(topic, p): off for p, off in offsets.items()}
        c = self._consumer(group_id=group)
        try:
            c.assign(list(tps))
            for tp, off in tps.items():
                c.seek(tp, off)
            c.commit()  # commits the positions set above
        finally:
            c.close(autocommit=False)

    @_broker_errors
    def fetch_committed(self, group: str, topic: str, partitions: Iterable[int]) -> Dict[int, Optional[int]]:
        c = self._consumer(group_id=group)
        try:
            return {p: c.committed(TopicPartition(topic, p)) for p in partitions}
        finally:
            c.close(autocommit=False)

    @_broker_errors
    def list_groups(self) -> List[str]:
        return self._ensure_admin().list_groups()

    # ---------- Topics ----------
    @_broker_errors
    def list_topics(self) -> List[str]:
        return self._ensure_admin().list_topics()

    @_broker_errors
    def describe_topic(self, topic: str) -> dict:
        return self._ensure_admin().describe_topic(topic)

    @_broker_errors
    def create_topic(self, name: str, detail: TopicDetail, validate_only: bool) -> None:
        self._ensure_admin().create_topic(name, detail, validate_only)

    @_broker_errors
    def delete_topic(self, name: str) -> None:
        self._ensure_admin().delete_topic(name)

    def close(self) -> None:
        try:
            if self._producer is not None:
                self._producer.close(timeout=self.settings.produce_timeout_sec)
            if self._meta is not None:
                self._meta.close(autocommit=False)
            if self._admin is not None:
                self._admin.close()
        except (KafkaError, OSError):
            LOG.debug("close failed", exc_info=True)
        finally:
            self._meta = self._producer = self._admin = None


def connect(settings: Settings, command: str) -> BrokerClient:
    """Return a client for the configured brokers; connections open on first use."""
    LOG.debug("connecting brokers=%s tls=%s", settings.broker_list, settings.tls_enabled)
    return KafkaBrokerClient(settings, command)
