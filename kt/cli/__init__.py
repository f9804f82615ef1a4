"""Command-line entry point: ``kt <command> [flags]``."""
from __future__ import annotations

import logging
import sys
from typing import Optional, Sequence, TextIO

from kt.cli import commands
from kt.cli.parser import parse_args
from kt.core.exceptions import KtError
from kt.infra.kafka.client import connect as kafka_connect
from kt.services.console import Console


def setup_logging(level: str, verbose: bool = False, stream: Optional[TextIO] = None) -> None:
    lvl = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(level=lvl, format="%(asctime)s %(levelname)s %(name)s - %(message)s",
                        stream=stream or sys.stderr)
    # kafka-python is very chatty at DEBUG
    logging.getLogger("kafka").setLevel(logging.INFO if verbose else max(lvl, logging.WARNING))


def run(
    argv: Optional[Sequence[str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
    connect: commands.Connect = kafka_connect,
) -> int:
    """Parse, dispatch and map errors to an exit code."""
    stdin = stdin if stdin is not None else sys.stdin
    stderr = stderr if stderr is not None else sys.stderr
    argv = list(sys.argv[1:] if argv is None else argv)

    try:
        command, args = parse_args(argv)
    except SystemExit as exc:
        # argparse: 0 for -h, 2 for usage errors
        return int(exc.code or 0)
    except KtError as exc:
        stderr.write(f"kt: {exc.message}\n")
        return exc.exit_code

    console = Console(out=stdout, err=stderr, pretty=args.pretty)
    client = None
    try:
        settings = args.settings(**_overrides(command, args))
        setup_logging(settings.log_level, args.verbose, stderr)
        client = connect(settings, command)
        if command == "produce":
            commands.run_produce(args, client, console, stdin)
        elif command == "consume":
            commands.run_consume(args, client, console, settings)
        elif command == "group":
            commands.run_group(args, client, console)
        elif command == "topic":
            commands.run_topic(args, client, console)
        else:
            commands.run_admin(args, client, console)
    except KtError as exc:
        stderr.write(f"kt: {exc.message}\n")
        return exc.exit_code
    except KeyboardInterrupt:
        return 130
    finally:
        if client is not None:
            client.close()
    return 0


def _overrides(command: str, args) -> dict:
    if command == "produce" and args.timeout is not None:
        return {"produce_timeout_sec": args.timeout}
    return {}


def main(argv: Optional[Sequence[str]] = None) -> None:
    sys.exit(run(argv))
