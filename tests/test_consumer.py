"""Tests for partition readers and the consumer coordinator."""
import io
import json
import queue
import threading
import time

import pytest

from conftest import FakeBroker, lines
from kt.core.exceptions import CommitError, ConsumeError, FetchError, TopicNotFound
from kt.domain.models.offsets import OffsetSpec
from kt.domain.services.consumer import ConsumerCoordinator, PartitionReader, _Delivery, _Finished
from kt.services.console import Console


def _values(out):
    return [json.loads(line)["value"] for line in lines(out)]


class TestCoordinatorOutput:
    def test_last_line_is_most_recent_message(self, broker, console, out, err, settings):
        broker.append("kt-test", 0, "older", key="k0")
        broker.append("kt-test", 0, "hello, ab123", key="xy9")

        ConsumerCoordinator(broker, console, settings).run("kt-test", idle_timeout=0.2)

        last = json.loads(lines(out)[-1])
        assert last["value"] == "hello, ab123"
        assert last["key"] == "xy9"
        assert last["partition"] == 0
        assert last["offset"] == 1
        assert last["timestamp"] is not None
        assert err.getvalue() == ""

    def test_order_within_partition_is_preserved(self, console, out, settings):
        broker = FakeBroker({"t": 3})
        for i in range(20):
            broker.append("t", i % 3, str(i))

        ConsumerCoordinator(broker, console, settings).run("t", idle_timeout=0.2)

        records = [json.loads(line) for line in lines(out)]
        assert len(records) == 20
        for p in range(3):
            offsets = [r["offset"] for r in records if r["partition"] == p]
            assert offsets == sorted(offsets)
            assert len(offsets) == len(set(offsets))

    def test_partition_filter(self, console, out, settings):
        broker = FakeBroker({"t": 3})
        for p in range(3):
            broker.append("t", p, f"p{p}")

        ConsumerCoordinator(broker, console, settings).run("t", partitions=[0, 2], idle_timeout=0.2)

        assert sorted(_values(out)) == ["p0", "p2"]

    def test_messages_arriving_during_the_session(self, broker, console, out, settings):
        coordinator = ConsumerCoordinator(broker, console, settings)
        producer = threading.Timer(0.1, broker.append, args=("kt-test", 0, "late"))
        producer.start()

        coordinator.run("kt-test", offset=OffsetSpec.parse("newest"), idle_timeout=0.5)
        producer.join()

        assert _values(out) == ["late"]

    def test_hex_encoding(self, broker, settings, out, console):
        broker.append("kt-test", 0, "AB", key="k")

        ConsumerCoordinator(broker, console, settings, encode_key="hex", encode_value="base64").run(
            "kt-test", idle_timeout=0.2
        )

        record = json.loads(lines(out)[0])
        assert record["key"] == "6b"
        assert record["value"] == "QUI="

    def test_unknown_topic(self, broker, console, settings):
        with pytest.raises(TopicNotFound):
            ConsumerCoordinator(broker, console, settings).run("missing", idle_timeout=0.1)


class TestStartOffsets:
    @pytest.fixture
    def filled(self, broker):
        for i in range(5):
            broker.append("kt-test", 0, str(i))
        return broker

    @pytest.mark.parametrize(
        "expr, expected",
        [
            ("oldest", ["0", "1", "2", "3", "4"]),
            ("newest", []),
            ("3", ["3", "4"]),
            ("newest-2", ["3", "4"]),
            ("oldest+4", ["4"]),
        ],
    )
    def test_explicit_offset(self, filled, console, out, settings, expr, expected):
        ConsumerCoordinator(filled, console, settings).run(
            "kt-test", offset=OffsetSpec.parse(expr), idle_timeout=0.15
        )

        assert _values(out) == expected

    def test_committed_offset_wins_over_default(self, filled, console, settings):
        filled.commits[("g", "kt-test")] = {0: 3}

        starts = ConsumerCoordinator(filled, console, settings).start_offsets("kt-test", [0], group="g")

        assert starts == {0: 3}

    def test_explicit_offset_wins_over_commit(self, filled, console, settings):
        filled.commits[("g", "kt-test")] = {0: 3}

        starts = ConsumerCoordinator(filled, console, settings).start_offsets(
            "kt-test", [0], offset=OffsetSpec.parse("1"), group="g"
        )

        assert starts == {0: 1}

    def test_default_sentinel_from_settings(self, filled, console, settings):
        tail = settings.model_copy(update={"default_offset": "newest"})

        starts = ConsumerCoordinator(filled, console, tail).start_offsets("kt-test", [0])

        assert starts == {0: 5}


class TestGroupSessions:
    def test_fresh_group_sees_every_record_across_runs(self, broker, settings, err):
        def consume():
            out = io.StringIO()
            ConsumerCoordinator(broker, Console(out=out, err=err), settings).run(
                "kt-test", group="fresh", idle_timeout=0.15
            )
            return _values(out)

        broker.append("kt-test", 0, "a")
        broker.append("kt-test", 0, "b")
        assert consume() == ["a", "b"]
        assert broker.commits[("fresh", "kt-test")] == {0: 2}

        broker.append("kt-test", 0, "c")
        broker.append("kt-test", 0, "d")
        assert consume() == ["c", "d"]
        assert consume() == []
        assert broker.commits[("fresh", "kt-test")] == {0: 4}

    def test_commit_without_messages_keeps_start(self, broker, console, settings):
        broker.append("kt-test", 0, "a")

        result = ConsumerCoordinator(broker, console, settings).run(
            "kt-test", group="g", offset=OffsetSpec.parse("newest"), idle_timeout=0.1
        )

        assert result.committed
        assert result.written == 0
        assert broker.commits[("g", "kt-test")] == {0: 1}

    def test_no_group_no_commit(self, broker, console, settings):
        broker.append("kt-test", 0, "a")

        result = ConsumerCoordinator(broker, console, settings).run("kt-test", idle_timeout=0.1)

        assert not result.committed
        assert broker.commits == {}

    def test_commit_failure_is_reported_after_output(self, broker, console, out, err, settings):
        broker.append("kt-test", 0, "a")
        broker.fail_commit = True

        with pytest.raises(ConsumeError) as exc_info:
            ConsumerCoordinator(broker, console, settings).run("kt-test", group="g", idle_timeout=0.1)

        assert _values(out) == ["a"]
        assert isinstance(exc_info.value.errors[0], CommitError)
        assert "failed to commit offsets for group=g" in err.getvalue()


class TestReaderFailures:
    def test_fetch_error_is_isolated_to_its_partition(self, console, out, err, settings):
        broker = FakeBroker({"t": 2})
        broker.append("t", 0, "zero")
        broker.append("t", 1, "one")
        broker.fail_fetch = {1}

        with pytest.raises(ConsumeError) as exc_info:
            ConsumerCoordinator(broker, console, settings).run("t", group="g", idle_timeout=0.15)

        assert _values(out) == ["zero"]
        errors = exc_info.value.errors
        assert len(errors) == 1 and isinstance(errors[0], FetchError)
        assert errors[0].partition == 1
        assert "partition=1" in err.getvalue()
        # the partition that failed keeps its start position
        assert broker.commits[("g", "t")] == {0: 1, 1: 0}

    def test_stream_open_failure(self, broker, console, settings):
        broker.fail_open = {0}

        with pytest.raises(ConsumeError):
            ConsumerCoordinator(broker, console, settings).run("kt-test", idle_timeout=0.1)

    def test_out_of_range_reset_fails_at_next_consume(self, broker, console, err, settings):
        broker.append("kt-test", 0, "a")
        broker.commits[("g", "kt-test")] = {0: 100}

        with pytest.raises(ConsumeError):
            ConsumerCoordinator(broker, console, settings).run("kt-test", group="g", idle_timeout=0.1)

        assert "OffsetOutOfRange" in err.getvalue()


class TestTermination:
    def test_idle_session_ends_after_timeout(self, broker, console, out, settings):
        started = time.monotonic()

        result = ConsumerCoordinator(broker, console, settings).run("kt-test", idle_timeout=0.3)

        elapsed = time.monotonic() - started
        assert 0.3 <= elapsed < 1.5
        assert result.written == 0
        assert out.getvalue() == ""

    def test_cancellation_stops_an_unbounded_session(self, broker, console, settings):
        coordinator = ConsumerCoordinator(broker, console, settings)
        threading.Timer(0.2, coordinator.cancel.set).start()
        started = time.monotonic()

        coordinator.run("kt-test", group="g", idle_timeout=None)

        assert time.monotonic() - started < 2.0
        assert broker.commits[("g", "kt-test")] == {0: 0}
        assert all(r.state in ("cancelled", "drained") for r in coordinator.readers.values())


class TestPartitionReader:
    def _reader(self, broker, sink, cancel, idle=0.1, start=0):
        return PartitionReader(broker, "kt-test", 0, start, sink, cancel, idle, poll_interval=0.02)

    def test_drains_and_reports_next_offset(self, broker):
        broker.append("kt-test", 0, "a")
        broker.append("kt-test", 0, "b")
        sink = queue.Queue()
        reader = self._reader(broker, sink, threading.Event())

        reader.run()

        items = [sink.get_nowait() for _ in range(sink.qsize())]
        assert [i.message.offset for i in items if isinstance(i, _Delivery)] == [0, 1]
        assert items[-1] == _Finished(0, 2, None)
        assert reader.state == "drained"
        assert broker.streams[0].closed

    def test_skips_offsets_below_position(self, broker):
        for v in "abc":
            broker.append("kt-test", 0, v)
        sink = queue.Queue()
        reader = self._reader(broker, sink, threading.Event(), start=2)

        reader.run()

        delivered = [i.message.value for i in list(sink.queue) if isinstance(i, _Delivery)]
        assert delivered == [b"c"]

    def test_cancelled_while_queue_is_full(self, broker):
        for v in "abc":
            broker.append("kt-test", 0, v)
        sink = queue.Queue(maxsize=1)
        cancel = threading.Event()
        reader = self._reader(broker, sink, cancel, idle=None)
        t = threading.Thread(target=reader.run, daemon=True)
        t.start()
        time.sleep(0.1)

        cancel.set()
        t.join(timeout=1.0)

        assert not t.is_alive()
        assert reader.next_offset == 1


class SlowOpenBroker(FakeBroker):
    """Opening a stream takes longer than the idle timeout, like a cold bootstrap."""

    def fetch(self, topic, partition, offset):
        time.sleep(0.4)
        return super().fetch(topic, partition, offset)


class CrashingStream:
    def __init__(self):
        self.closed = False

    def poll(self, timeout_sec):
        raise RuntimeError("record decoder blew up")

    def close(self):
        self.closed = True


class TestReaderRobustness:
    def test_slow_stream_open_does_not_count_as_idle(self, console, out, settings):
        broker = SlowOpenBroker({"t": 1})
        broker.append("t", 0, "waiting")

        result = ConsumerCoordinator(broker, console, settings).run("t", idle_timeout=0.3)

        assert _values(out) == ["waiting"]
        assert result.written == 1

    def test_unexpected_poll_error_fails_the_session(self, broker, console, err, settings, monkeypatch):
        stream = CrashingStream()
        monkeypatch.setattr(broker, "fetch", lambda topic, partition, offset: stream)
        coordinator = ConsumerCoordinator(broker, console, settings)

        with pytest.raises(ConsumeError) as exc_info:
            coordinator.run("kt-test", idle_timeout=0.2)

        assert isinstance(exc_info.value.errors[0], FetchError)
        assert "RuntimeError: record decoder blew up" in err.getvalue()
        assert coordinator.readers[0].state == "failed"
        assert stream.closed

    def test_unexpected_open_error_ends_the_session(self, broker, console, settings, monkeypatch):
        def explode(topic, partition, offset):
            raise ValueError("bad bootstrap config")

        monkeypatch.setattr(broker, "fetch", explode)
        coordinator = ConsumerCoordinator(broker, console, settings)
        raised = []

        def consume():
            try:
                coordinator.run("kt-test", idle_timeout=None)
            except ConsumeError as exc:
                raised.append(exc)

        t = threading.Thread(target=consume, daemon=True)
        t.start()
        t.join(timeout=3.0)
        if t.is_alive():
            coordinator.cancel.set()
            t.join(timeout=1.0)
            pytest.fail("session kept running after its only reader died")

        assert "ValueError: bad bootstrap config" in raised[0].errors[0].message
        assert coordinator.readers[0].state == "failed"
