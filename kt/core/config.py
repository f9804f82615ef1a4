# kt/core/config.py
from __future__ import annotations

import getpass
import re
from typing import List, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kt.core.exceptions import ArgumentError

DEFAULT_PORT = 9092


class Settings(BaseSettings):
    """
    Per-invocation configuration loaded from environment variables (and .env).

    Notes
    -----
    - Every variable is read with the ``KT_`` prefix, e.g. ``KT_BROKERS``.
    - ``brokers`` is a comma-separated string; a broker without a port gets
      ``:9092`` (see ``broker_list``).
    - Keyword arguments passed to the constructor win over the environment,
      which is how command-line flags override ``KT_*`` values.
    - TLS is all-or-nothing: CA, client certificate and client key together.
    """
    model_config = SettingsConfigDict(
        env_prefix="KT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ---------- Kafka client ----------
    brokers: str = f"localhost:{DEFAULT_PORT}"
    kafka_api_version: str | None = None
    client_id_prefix: str = "kt"

    # Client timeouts
    request_timeout_ms: int = Field(default=30_000, ge=1)
    produce_timeout_sec: float = Field(default=30.0, gt=0)

    # ---------- Security ----------
    tls_ca: str | None = None
    tls_cert: str | None = None
    tls_cert_key: str | None = None

    # ---------- Consume session ----------
    poll_interval_ms: int = Field(
        default=100, ge=1,
        description="Upper bound of a single fetch wait inside a partition reader."
    )
    merge_buffer: int = Field(
        default=1024, ge=1,
        description="Capacity of the queue between partition readers and the output writer."
    )
    default_offset: Literal["oldest", "newest"] = Field(
        default="oldest",
        description="Start position when neither an explicit offset nor a group commit applies."
    )

    # ---------- Logging ----------
    log_level: str = "WARNING"

    @field_validator("brokers")
    def _check_brokers(cls, v: str) -> str:
        if not _split_brokers(v):
            raise ValueError("no brokers given")
        return v

    @field_validator("kafka_api_version")
    def _check_version(cls, v):
        if v is not None and not re.fullmatch(r"\d+(\.\d+){1,3}", v):
            raise ValueError(f"invalid Kafka version {v!r}, expected e.g. 2.6.0")
        return v

    @model_validator(mode="after")
    def _check_tls(self):
        paths = (self.tls_ca, self.tls_cert, self.tls_cert_key)
        if any(paths) and not all(paths):
            raise ValueError(
                "certificate, CA and key path are required together - "
                f"got cert={self.tls_cert!r} ca={self.tls_ca!r} key={self.tls_cert_key!r}"
            )
        return self

    @property
    def broker_list(self) -> List[str]:
        return [b if ":" in b else f"{b}:{DEFAULT_PORT}" for b in _split_brokers(self.brokers)]

    @property
    def tls_enabled(self) -> bool:
        return bool(self.tls_ca and self.tls_cert and self.tls_cert_key)

    @property
    def api_version(self) -> tuple[int, ...] | None:
        """``"2.6.0"`` -> ``(2, 6, 0)`` as kafka-python expects."""
        if not self.kafka_api_version:
            return None
        return tuple(int(p) for p in self.kafka_api_version.split("."))

    def client_id(self, command: str) -> str:
        return f"{self.client_id_prefix}-{command}-{_sanitize_username(_current_user())}"


def load_settings(**overrides) -> Settings:
    """Build settings, letting non-None overrides win over the environment."""
    kwargs = {k: v for k, v in overrides.items() if v is not None}
    try:
        return Settings(**kwargs)
    except ValueError as exc:
        raise ArgumentError(str(exc)) from exc


def _split_brokers(v: str) -> List[str]:
    return [s.strip() for s in v.split(",") if s.strip()]


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def _sanitize_username(name: str) -> str:
    # Windows domain users show up as DOMAIN\user
    name = name.split("\\")[-1]
    return re.sub(r"[^a-zA-Z0-9._-]", "", name) or "unknown"
