"""argparse front-end: sub-commands, flag parsing and argument-model construction."""
from __future__ import annotations

import argparse
import re
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, ValidationError

from kt.cli.args import AdminArgs, ConsumeArgs, GroupArgs, ProduceArgs, TopicArgs
from kt.core.exceptions import ArgumentError
from kt.domain.models.offsets import OffsetSpec
from kt.domain.services.producer import PARTITIONERS
from kt.domain.services.topic_service import load_topic_detail
from kt.services.codec import ENCODINGS

ENV_DOC = """
The value for -brokers can also be set via the environment variable KT_BROKERS.
The value supplied on the command line wins over the environment variable value.
"""

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_UNITS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}


# ---------- value parsers ----------

def parse_duration(text: str) -> float:
    """``"500ms"``, ``"2s"``, ``"1m30s"`` -> seconds. A bare number is seconds."""
    s = text.strip()
    if not s:
        raise ValueError("empty duration")
    try:
        return float(s)
    except ValueError:
        pass
    pos, total = 0, 0.0
    for m in _DURATION_RE.finditer(s):
        if m.start() != pos:
            break
        total += float(m.group(1)) * _UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s):
        raise ValueError(f"invalid duration {text!r}, expected e.g. 500ms, 2s, 1m30s")
    return total


def parse_partitions(arg: Optional[str]) -> Optional[List[int]]:
    """
    Partition filter given as CSV, e.g. "0,1,2". Empty, omitted or "all"
    means every partition.
    """
    if arg is None:
        return None
    s = str(arg).strip()
    if not s or s == "all":
        return None
    try:
        ids = [int(p.strip()) for p in s.split(",") if p.strip() != ""]
    except ValueError as exc:
        raise ValueError(f"invalid partition list {arg!r}, expected e.g. 0,1,2") from exc
    if any(i < 0 for i in ids):
        raise ValueError(f"invalid partition list {arg!r}, partition ids are >= 0")
    return ids


# ---------- parser ----------

def _common(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("-brokers", "--brokers", default=None,
                    help="Comma separated list of brokers. Port defaults to 9092 when omitted "
                         "(defaults to localhost:9092).")
    ap.add_argument("-verbose", "--verbose", action="store_true", help="More verbose logging to stderr.")
    ap.add_argument("-version", "--version", default=None, help="Kafka protocol version, e.g. 2.6.0")
    ap.add_argument("-tlsca", "--tlsca", dest="tls_ca", default=None,
                    help="Path to the TLS certificate authority file")
    ap.add_argument("-tlscert", "--tlscert", dest="tls_cert", default=None,
                    help="Path to the TLS client certificate file")
    ap.add_argument("-tlscertkey", "--tlscertkey", dest="tls_cert_key", default=None,
                    help="Path to the TLS client certificate key file")
    ap.add_argument("-pretty", "--pretty", action="store_true", help="Control output pretty printing.")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="kt",
        description="Kafka command line tool: produce, consume, group offsets and topic admin",
        allow_abbrev=False,
    )
    sub = ap.add_subparsers(dest="command", metavar="<command>")
    sub.required = True

    def add(name: str, help_: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_, description=help_, epilog=ENV_DOC, allow_abbrev=False,
                           formatter_class=argparse.RawDescriptionHelpFormatter)
        _common(p)
        return p

    # produce
    p = add("produce", "Produce messages read as lines from stdin.")
    p.add_argument("-topic", "--topic", required=True, help="Topic to produce to.")
    p.add_argument("-partition", "--partition", type=int, default=None,
                   help="Partition for records that do not name one.")
    p.add_argument("-literal", "--literal", action="store_true",
                   help="Interpret stdin line literally as the message value.")
    p.add_argument("-decodekey", "--decodekey", dest="decode_key", default="string", choices=ENCODINGS,
                   help="Decode message key from the given encoding.")
    p.add_argument("-decodevalue", "--decodevalue", dest="decode_value", default="string", choices=ENCODINGS,
                   help="Decode message value from the given encoding.")
    p.add_argument("-partitioner", "--partitioner", default="roundrobin", choices=PARTITIONERS,
                   help="Partitioner for records without a partition.")
    p.add_argument("-timeout", "--timeout", default=None, help="Per-message send timeout, e.g. 5s.")

    # consume
    p = add("consume", "Consume messages and write them to stdout as JSON lines.")
    p.add_argument("-topic", "--topic", required=True, help="Topic to consume.")
    p.add_argument("-group", "--group", default=None, help="Consumer group whose offsets to use and commit.")
    p.add_argument("-timeout", "--timeout", default=None,
                   help="Stop after this long without new messages per partition, e.g. 500ms "
                        "(defaults to 0, run until interrupted).")
    p.add_argument("-offset", "--offset", default=None,
                   help="Start offset: oldest, newest, N, oldest+N or newest-N.")
    p.add_argument("-partitions", "--partitions", default=None,
                   help="Comma separated partitions to read (defaults to all).")
    p.add_argument("-encodekey", "--encodekey", dest="encode_key", default="string", choices=ENCODINGS,
                   help="Encoding for message keys in the output.")
    p.add_argument("-encodevalue", "--encodevalue", dest="encode_value", default="string", choices=ENCODINGS,
                   help="Encoding for message values in the output.")

    # group
    p = add("group", "List or reset consumer group offsets.")
    p.add_argument("-topic", "--topic", required=True, help="Topic the offsets belong to.")
    p.add_argument("-group", "--group", default=None, help="Consumer group name.")
    p.add_argument("-filter", "--filter", default=None,
                   help="Regular expression selecting groups by name (ignored with -group).")
    p.add_argument("-reset", "--reset", default=None,
                   help="Commit this offset (N, oldest or newest) for the selected partitions.")
    p.add_argument("-partitions", "--partitions", default=None,
                   help="Comma separated partitions (defaults to all).")

    # topic
    p = add("topic", "List topics.")
    p.add_argument("-filter", "--filter", default=None, help="Regular expression to filter topics by name.")
    p.add_argument("-partitions", "--partitions", action="store_true",
                   help="Include partition ids with oldest and newest offsets.")
    p.add_argument("-leaders", "--leaders", action="store_true", help="Include leader per partition.")
    p.add_argument("-replicas", "--replicas", action="store_true",
                   help="Include replica and in-sync replica ids per partition.")

    # admin
    p = add("admin", "Create or delete topics.")
    p.add_argument("-createtopic", "--createtopic", dest="create_topic", default=None,
                   help="Name of the topic that should be created.")
    p.add_argument("-topicdetail", "--topicdetail", dest="topic_detail", default=None,
                   help="Path to JSON encoded topic detail (NumPartitions, ReplicationFactor, ConfigEntries).")
    p.add_argument("-validateonly", "--validateonly", dest="validate_only", action="store_true",
                   help="Only validate the request (supported for createtopic).")
    p.add_argument("-deletetopic", "--deletetopic", dest="delete_topic", default=None,
                   help="Name of the topic that should be deleted.")
    return ap


_MODELS = {
    "produce": ProduceArgs,
    "consume": ConsumeArgs,
    "group": GroupArgs,
    "topic": TopicArgs,
    "admin": AdminArgs,
}


def parse_args(argv: Sequence[str]) -> Tuple[str, BaseModel]:
    """Parse once into an immutable argument model.

    argparse itself exits with status 2 on unknown or missing flags; semantic
    problems raise ``ArgumentError``.
    """
    ns = build_parser().parse_args(list(argv))
    raw = {k: v for k, v in vars(ns).items() if k != "command"}
    try:
        if ns.command in ("produce", "consume") and raw.get("timeout") is not None:
            raw["timeout"] = parse_duration(raw["timeout"])
        if ns.command in ("consume", "group"):
            raw["partitions"] = parse_partitions(raw.get("partitions"))
        if ns.command == "consume" and raw.get("offset") is not None:
            raw["offset"] = OffsetSpec.parse(raw["offset"])
        if ns.command == "group" and raw.get("reset") is not None:
            raw["reset"] = OffsetSpec.parse(raw["reset"])
        if ns.command == "group" and raw.get("filter"):
            re.compile(raw["filter"])
        if ns.command == "topic" and raw.get("filter"):
            re.compile(raw["filter"])
        if ns.command == "admin":
            path = raw.get("topic_detail")
            raw["topic_detail"] = load_topic_detail(path) if path and raw.get("create_topic") else None
        return ns.command, _MODELS[ns.command].model_validate(raw)
    except re.error as exc:
        raise ArgumentError(f"invalid -filter regular expression: {exc}") from exc
    except ValidationError as exc:
        raise ArgumentError(_first_error(exc)) from exc
    except ValueError as exc:
        raise ArgumentError(str(exc)) from exc


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    msg = str(err.get("msg", "invalid value")).removeprefix("Value error, ")
    return f"{loc}: {msg}" if loc else msg
