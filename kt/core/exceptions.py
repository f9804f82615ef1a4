"""Error taxonomy shared by every sub-command.

Each error carries the process exit code the CLI maps it to, the same way the
HTTP layer of an API carries a status code on its problem exceptions.
"""
from __future__ import annotations

from typing import Optional


class KtError(Exception):
    """Base class; raise inside services to abort the current command."""

    exit_code: int = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ArgumentError(KtError):
    """Bad or missing flags. No broker connection is attempted."""

    exit_code = 2


class BrokerError(KtError):
    """Normalised failure of the underlying Kafka client library."""


class ResolutionError(KtError):
    """Partition metadata could not be obtained or did not match the request."""


class TopicNotFound(ResolutionError):
    def __init__(self, topic: str) -> None:
        super().__init__(f"topic {topic!r} not found (broker reports no partitions)")
        self.topic = topic


class InputParseError(KtError):
    """A producer input line could not be parsed."""

    def __init__(self, line: int, detail: str) -> None:
        super().__init__(f"failed to parse input line {line}: {detail}")
        self.line = line


class ProduceError(KtError):
    """Sending a record failed; carries the 1-based input line number."""

    def __init__(self, line: int, detail: str) -> None:
        super().__init__(f"failed to send record from input line {line}: {detail}")
        self.line = line


class FetchError(KtError):
    """A partition reader failed; fatal only to that reader."""

    def __init__(self, partition: int, detail: str) -> None:
        super().__init__(f"failed to read partition={partition}: {detail}")
        self.partition = partition


class CommitError(KtError):
    """Committing group offsets failed."""

    def __init__(self, group: str, topic: str, detail: str, partitions: Optional[list[int]] = None) -> None:
        where = f" partitions={partitions}" if partitions else ""
        super().__init__(f"failed to commit offsets for group={group} topic={topic}{where}: {detail}")
        self.group = group
        self.topic = topic


class AdminError(KtError):
    """Topic administration request rejected by the cluster."""


class ConsumeError(KtError):
    """Raised after a consume session in which readers or the final commit failed.

    The individual failures were already reported as they happened.
    """

    def __init__(self, errors: list[KtError]) -> None:
        super().__init__(f"consume session finished with {len(errors)} error(s)")
        self.errors = errors
