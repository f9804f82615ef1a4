"""Concurrent per-partition readers merged into one output stream."""
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from kt.core.config import Settings
from kt.core.exceptions import BrokerError, CommitError, ConsumeError, FetchError, KtError, ResolutionError
from kt.domain.models.message import Message, MessageRecord
from kt.domain.models.offsets import OffsetSpec
from kt.domain.services.resolver import PartitionResolver
from kt.infra.kafka.client import BrokerClient, PartitionStream
from kt.services import codec
from kt.services.console import Console

LOG = logging.getLogger(__name__)

# How long the merge loop blocks before re-checking cancellation.
_TICK_SEC = 0.1


class _Delivery(NamedTuple):
    message: Message


class _Finished(NamedTuple):
    partition: int
    next_offset: int
    error: Optional[FetchError]


class ConsumeResult(NamedTuple):
    positions: Dict[int, int]
    written: int
    committed: bool
    errors: List[KtError]


class PartitionReader:
    """
    Owns one partition for the length of a session.

    Polls with a bounded wait, hands complete messages to the merge queue,
    and stops when the idle timeout elapses (drained), when the cancellation
    token is set, or on the first fetch error. Position only ever moves to
    ``offset + 1`` of a delivered message.
    """

    def __init__(
        self,
        client: BrokerClient,
        topic: str,
        partition: int,
        start_offset: int,
        sink: "queue.Queue",
        cancel: threading.Event,
        idle_timeout: Optional[float],
        poll_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.topic = topic
        self.partition = partition
        self.next_offset = start_offset
        self.state = "pending"
        self._client = client
        self._sink = sink
        self._cancel = cancel
        self._idle_timeout = idle_timeout or None
        self._poll_interval = poll_interval
        self._clock = clock
        self.last_activity = clock()

    def run(self) -> None:
        error: Optional[FetchError] = None
        stream: Optional[PartitionStream] = None
        try:
            stream = self._client.fetch(self.topic, self.partition, self.next_offset)
            self.state = "running"
            self._loop(stream)
        except BrokerError as exc:
            error = FetchError(self.partition, exc.message)
            self.state = "failed"
        except Exception as exc:
            LOG.exception("reader partition=%d crashed", self.partition)
            error = FetchError(self.partition, f"{exc.__class__.__name__}: {exc}")
            self.state = "failed"
        finally:
            if stream is not None:
                stream.close()
            LOG.debug("reader partition=%d stopped state=%s next_offset=%d",
                      self.partition, self.state, self.next_offset)
            self._finish(error)

    def _loop(self, stream: PartitionStream) -> None:
        # idle time counts from an open stream, and at least one poll happens
        self.last_activity = self._clock()
        polled = False
        while not self._cancel.is_set():
            wait = self._poll_interval
            if self._idle_timeout is not None and polled:
                remaining = self._idle_timeout - (self._clock() - self.last_activity)
                if remaining <= 0:
                    self.state = "drained"
                    return
                wait = min(wait, remaining)

            batch = stream.poll(wait)
            polled = True
            for msg in batch:
                if msg.offset < self.next_offset:
                    continue
                if not self._put(_Delivery(msg)):
                    break
                self.next_offset = msg.offset + 1
                self.last_activity = self._clock()
        self.state = "cancelled"

    def _put(self, item) -> bool:
        """Block until the merge queue takes ``item``; False if cancelled first."""
        while not self._cancel.is_set():
            try:
                self._sink.put(item, timeout=_TICK_SEC)
                return True
            except queue.Full:
                continue
        return False

    def _finish(self, error: Optional[FetchError]) -> None:
        done = _Finished(self.partition, self.next_offset, error)
        if not self._put(done):
            try:
                self._sink.put_nowait(done)
            except queue.Full:
                pass


class ConsumerCoordinator:
    """
    Runs one ``PartitionReader`` per partition and is the single writer of
    the output stream.

    Session ends when every reader has finished or the cancellation token is
    set. With a group, the offset after the last *written* message of each
    partition is committed at session end (at-least-once).
    """

    def __init__(
        self,
        client: BrokerClient,
        console: Console,
        settings: Settings,
        encode_key: str = "string",
        encode_value: str = "string",
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self._client = client
        self._console = console
        self._settings = settings
        self._resolver = PartitionResolver(client)
        self._encode_key = codec.encoder(encode_key)
        self._encode_value = codec.encoder(encode_value)
        self.cancel = cancel or threading.Event()
        self.readers: Dict[int, PartitionReader] = {}

    # ---------- positioning ----------
    def start_offsets(
        self,
        topic: str,
        partitions: List[int],
        offset: Optional[OffsetSpec] = None,
        group: Optional[str] = None,
    ) -> Dict[int, int]:
        """Explicit offset, else the group's commit, else the default sentinel."""
        starts: Dict[int, int] = {}
        specs: Dict[int, OffsetSpec] = {}
        try:
            if offset is not None:
                specs = {p: offset for p in partitions}
            else:
                committed = self._client.fetch_committed(group, topic, partitions) if group else {}
                default = OffsetSpec(base=self._settings.default_offset)
                for p in partitions:
                    if committed.get(p) is not None:
                        starts[p] = committed[p]
                    else:
                        specs[p] = default

            need_marks = [p for p, s in specs.items() if s.needs_watermarks]
            marks = self._client.watermarks(topic, need_marks) if need_marks else {}
        except BrokerError as exc:
            raise ResolutionError(f"failed to resolve start offsets for topic={topic}: {exc.message}") from exc

        for p, spec in specs.items():
            starts[p] = spec.resolve(*marks[p]) if spec.needs_watermarks else spec.resolve()
        LOG.debug("start offsets topic=%s group=%s: %s", topic, group, starts)
        return starts

    # ---------- session ----------
    def run(
        self,
        topic: str,
        group: Optional[str] = None,
        offset: Optional[OffsetSpec] = None,
        partitions: Optional[Iterable[int]] = None,
        idle_timeout: Optional[float] = None,
    ) -> ConsumeResult:
        """Consume until idle or cancelled; raise ``ConsumeError`` if anything failed."""
        parts = self._resolver.resolve(topic, partitions)
        starts = self.start_offsets(topic, parts, offset, group)

        sink: "queue.Queue" = queue.Queue(maxsize=self._settings.merge_buffer)
        poll_interval = self._settings.poll_interval_ms / 1000.0
        threads = []
        for p in parts:
            reader = PartitionReader(
                self._client, topic, p, starts[p], sink, self.cancel, idle_timeout, poll_interval
            )
            self.readers[p] = reader
            t = threading.Thread(target=reader.run, name=f"kt-reader-{topic}-{p}", daemon=True)
            threads.append(t)
            t.start()

        positions = dict(starts)
        pending = set(parts)
        errors: List[KtError] = []
        written = 0
        while pending and not self.cancel.is_set():
            try:
                item = sink.get(timeout=_TICK_SEC)
            except queue.Empty:
                continue
            if isinstance(item, _Finished):
                pending.discard(item.partition)
                if item.error is not None:
                    errors.append(item.error)
                    self._console.diag(item.error.message)
                continue
            msg = item.message
            self._console.emit(MessageRecord.render(msg, self._encode_key, self._encode_value))
            positions[msg.partition] = msg.offset + 1
            written += 1

        if pending:
            LOG.debug("session cancelled with partitions %s still reading", sorted(pending))
            self.cancel.set()
        for t in threads:
            # readers blocked in a fetch are abandoned; they are daemon threads
            t.join(timeout=_TICK_SEC)

        committed = False
        if group:
            committed = self._commit(group, topic, positions, errors)

        result = ConsumeResult(positions=positions, written=written, committed=committed, errors=errors)
        if errors:
            raise ConsumeError(errors)
        return result

    def _commit(self, group: str, topic: str, positions: Dict[int, int], errors: List[KtError]) -> bool:
        try:
            self._client.commit(group, topic, positions)
        except BrokerError as exc:
            err = CommitError(group, topic, exc.message, sorted(positions))
            errors.append(err)
            self._console.diag(err.message)
            return False
        LOG.debug("committed group=%s topic=%s offsets=%s", group, topic, positions)
        return True
