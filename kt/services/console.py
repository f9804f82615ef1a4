# kt/services/console.py
from __future__ import annotations

import sys
import threading
from typing import TextIO

from pydantic import BaseModel


class Console:
    """
    Owns the two process streams.

    - ``out`` receives one JSON object per line and nothing else.
    - ``err`` receives human-readable diagnostics only.

    Writes are serialized so concurrent producers of records can never
    interleave partial lines.
    """

    def __init__(self, out: TextIO | None = None, err: TextIO | None = None, pretty: bool = False) -> None:
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr
        self.pretty = pretty
        self._lock = threading.Lock()

    def emit(self, record: BaseModel, exclude_none: bool = False) -> None:
        line = record.model_dump_json(
            by_alias=True,
            exclude_none=exclude_none,
            indent=2 if self.pretty else None,
        )
        with self._lock:
            self.out.write(line + "\n")
            self.out.flush()

    def diag(self, message: str) -> None:
        with self._lock:
            self.err.write(message + "\n")
            self.err.flush()
