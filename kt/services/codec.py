"""Text encodings for message keys and values on stdin/stdout."""
from __future__ import annotations

import base64
import binascii
from typing import Callable, Optional

ENCODINGS = ("string", "hex", "base64")


def encoder(name: str) -> Callable[[Optional[bytes]], Optional[str]]:
    """Return a bytes -> text function for ``-encodekey`` / ``-encodevalue``."""
    if name == "string":
        return lambda b: None if b is None else b.decode("utf-8", "replace")
    if name == "hex":
        return lambda b: None if b is None else b.hex()
    if name == "base64":
        return lambda b: None if b is None else base64.b64encode(b).decode("ascii")
    raise ValueError(f"unsupported encoding {name!r}, expected one of {', '.join(ENCODINGS)}")


def decoder(name: str) -> Callable[[Optional[str]], Optional[bytes]]:
    """Return a text -> bytes function for ``-decodekey`` / ``-decodevalue``.

    Raises ``ValueError`` from the returned function on malformed input.
    """
    if name == "string":
        return lambda s: None if s is None else s.encode("utf-8")
    if name == "hex":
        return lambda s: None if s is None else bytes.fromhex(s)
    if name == "base64":
        return _b64decode
    raise ValueError(f"unsupported encoding {name!r}, expected one of {', '.join(ENCODINGS)}")


def _b64decode(s: Optional[str]) -> Optional[bytes]:
    if s is None:
        return None
    try:
        return base64.b64decode(s, validate=True)
    except binascii.Error as exc:
        raise ValueError(f"invalid base64: {exc}") from exc
