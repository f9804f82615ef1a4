"""Line-delimited producer: parse stdin, pick partitions, send, summarise."""
from __future__ import annotations

import itertools
import json
import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from kafka.partitioner.default import murmur2
from pydantic import ValidationError

from kt.core.exceptions import BrokerError, InputParseError, ProduceError
from kt.domain.models.produce import InputRecord, ProduceRequest, ProduceSummary
from kt.domain.services.resolver import PartitionResolver
from kt.infra.kafka.client import BrokerClient
from kt.services import codec

LOG = logging.getLogger(__name__)

PARTITIONERS = ("roundrobin", "hashcode")


class RoundRobin:
    """Cycles through partitions in resolution order, advancing only when used."""

    def __init__(self, partitions: Sequence[int]) -> None:
        self._cycle = itertools.cycle(partitions)

    def __call__(self, key: Optional[bytes]) -> int:
        return next(self._cycle)


class HashCode:
    """Key hash partitioning compatible with the Java client (murmur2); keyless records go round-robin."""

    def __init__(self, partitions: Sequence[int]) -> None:
        self._partitions = list(partitions)
        self._fallback = RoundRobin(partitions)

    def __call__(self, key: Optional[bytes]) -> int:
        if key is None:
            return self._fallback(key)
        idx = (murmur2(key) & 0x7FFFFFFF) % len(self._partitions)
        return self._partitions[idx]


def make_partitioner(name: str, partitions: Sequence[int]) -> Callable[[Optional[bytes]], int]:
    if name == "roundrobin":
        return RoundRobin(partitions)
    if name == "hashcode":
        return HashCode(partitions)
    raise ValueError(f"unsupported partitioner {name!r}, expected one of {', '.join(PARTITIONERS)}")


class ProducerPipeline:
    """
    Reads one record per line and sends each synchronously.

    - A malformed line aborts the run with ``InputParseError``; records
      before it have already been sent and stay sent.
    - A send failure aborts the run with ``ProduceError`` naming the line.
    - After end of input, one ``ProduceSummary`` per touched partition,
      ascending by partition id.
    """

    def __init__(
        self,
        client: BrokerClient,
        literal: bool = False,
        decode_key: str = "string",
        decode_value: str = "string",
        partitioner: str = "roundrobin",
        default_partition: Optional[int] = None,
    ) -> None:
        self._client = client
        self._resolver = PartitionResolver(client)
        self._literal = literal
        self._decode_key = codec.decoder(decode_key)
        self._decode_value = codec.decoder(decode_value)
        self._partitioner = partitioner
        self._default_partition = default_partition

    # ---------- parsing ----------
    def parse(self, lines: Iterable[Union[str, bytes]]) -> Iterator[ProduceRequest]:
        """Yield one request per non-blank line; byte lines must be UTF-8."""
        for lineno, raw in enumerate(lines, start=1):
            if isinstance(raw, bytes):
                try:
                    raw = raw.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise InputParseError(lineno, f"invalid UTF-8: {exc.reason} at byte {exc.start}") from exc
            line = raw.rstrip("\r\n")
            if not line.strip():
                continue
            yield self._parse_line(lineno, line)

    def _parse_line(self, lineno: int, line: str) -> ProduceRequest:
        if self._literal:
            return ProduceRequest(line=lineno, value=line.encode("utf-8"))
        try:
            obj = json.loads(line)
            if not isinstance(obj, dict):
                raise InputParseError(lineno, f"expected a JSON object, got {type(obj).__name__}")
            rec = InputRecord.model_validate(obj)
            return ProduceRequest(
                line=lineno,
                key=self._decode_key(rec.key),
                value=self._decode_value(rec.value),
                partition=rec.partition,
            )
        except json.JSONDecodeError as exc:
            raise InputParseError(lineno, f"invalid JSON: {exc.msg}") from exc
        except ValidationError as exc:
            raise InputParseError(lineno, _first_error(exc)) from exc
        except ValueError as exc:
            raise InputParseError(lineno, str(exc)) from exc

    # ---------- sending ----------
    def run(self, topic: str, lines: Iterable[Union[str, bytes]]) -> List[ProduceSummary]:
        partitions = self._resolver.resolve(topic)
        valid = set(partitions)
        pick = make_partitioner(self._partitioner, partitions)
        fallback = self._default_partition if self._default_partition in valid else None
        if self._default_partition is not None and fallback is None:
            LOG.warning("partition=%s not in %s for topic=%s, using %s",
                        self._default_partition, partitions, topic, self._partitioner)

        counts: Dict[int, int] = {}
        starts: Dict[int, int] = {}
        for req in self.parse(lines):
            partition = self._choose(req, valid, fallback, pick)
            try:
                offset = self._client.produce(topic, partition, req.key, req.value)
            except BrokerError as exc:
                raise ProduceError(req.line, exc.message) from exc
            LOG.debug("sent line=%d partition=%d offset=%d", req.line, partition, offset)
            starts.setdefault(partition, offset)
            counts[partition] = counts.get(partition, 0) + 1

        return [
            ProduceSummary(partition=p, count=counts[p], start_offset=starts[p])
            for p in sorted(counts)
        ]

    def _choose(self, req: ProduceRequest, valid: set, fallback: Optional[int], pick) -> int:
        if req.partition is not None:
            if req.partition in valid:
                return req.partition
            LOG.warning("line=%d partition=%s not in topic, reassigning", req.line, req.partition)
        if fallback is not None:
            return fallback
        return pick(req.key)


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    where = ".".join(str(p) for p in err.get("loc", ())) or "record"
    return f"{where}: {err.get('msg')}"
