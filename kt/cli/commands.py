# kt/cli/commands.py
from __future__ import annotations

import contextlib
import logging
import signal
import threading
from typing import Callable, Iterator, TextIO

from kt.cli.args import AdminArgs, ConsumeArgs, GroupArgs, ProduceArgs, TopicArgs
from kt.core.config import Settings
from kt.domain.services.consumer import ConsumerCoordinator
from kt.domain.services.group_service import GroupOffsetManager
from kt.domain.services.producer import ProducerPipeline
from kt.domain.services.topic_service import TopicService
from kt.infra.kafka.client import BrokerClient
from kt.services.console import Console

LOG = logging.getLogger(__name__)

Connect = Callable[[Settings, str], BrokerClient]


def run_produce(args: ProduceArgs, client: BrokerClient, console: Console, stdin: TextIO) -> None:
    pipeline = ProducerPipeline(
        client,
        literal=args.literal,
        decode_key=args.decode_key,
        decode_value=args.decode_value,
        partitioner=args.partitioner,
        default_partition=args.partition,
    )
    # raw bytes so undecodable input is reported with its line number
    lines = getattr(stdin, "buffer", stdin)
    for summary in pipeline.run(args.topic, lines):
        console.emit(summary)


def run_consume(args: ConsumeArgs, client: BrokerClient, console: Console, settings: Settings) -> None:
    coordinator = ConsumerCoordinator(
        client, console, settings,
        encode_key=args.encode_key,
        encode_value=args.encode_value,
    )
    with _cancel_on_signals(coordinator.cancel):
        coordinator.run(
            args.topic,
            group=args.group,
            offset=args.offset,
            partitions=args.partitions,
            idle_timeout=args.timeout,
        )


def run_group(args: GroupArgs, client: BrokerClient, console: Console) -> None:
    manager = GroupOffsetManager(client, console)
    if args.reset is not None:
        manager.reset(args.group, args.topic, args.reset, args.partitions)
        return
    groups = manager.select_groups(args.group, args.filter)
    manager.list_offsets(args.topic, groups, args.partitions)


def run_topic(args: TopicArgs, client: BrokerClient, console: Console) -> None:
    TopicService(client, console).list_topics(
        pattern=args.filter,
        partitions=args.partitions,
        leaders=args.leaders,
        replicas=args.replicas,
    )


def run_admin(args: AdminArgs, client: BrokerClient, console: Console) -> None:
    svc = TopicService(client, console)
    # create wins when both are given
    if args.create_topic:
        svc.create_topic(args.create_topic, args.topic_detail, args.validate_only)
    else:
        svc.delete_topic(args.delete_topic)


@contextlib.contextmanager
def _cancel_on_signals(cancel: threading.Event) -> Iterator[None]:
    """SIGINT/SIGTERM set the session's cancellation token instead of raising."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _shutdown(signum, _frame):
        LOG.info("Signal %s received. Shutting down...", signum)
        cancel.set()

    previous = {s: signal.signal(s, _shutdown) for s in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler)
