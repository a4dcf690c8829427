"""Process configuration, read once from the environment at startup"""
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

import httpx
from pydantic import BaseModel, ValidationError, field_validator, model_validator

from errors import ConfigurationError

logger = logging.getLogger("RconHeartbeat.Config")


class Transport(str, Enum):
    CLASSIC = "classic"
    WEB = "web"


@dataclass(frozen=True)
class Endpoint:
    """Where and how to reach the RCON interface"""
    host: str
    port: int
    secure: bool
    credential: str

    def __repr__(self) -> str:
        # Keep the password out of logs and tracebacks
        return f"Endpoint(host={self.host!r}, port={self.port}, secure={self.secure})"


# field name -> environment variable
ENV_FIELDS = {
    "host": "RCON_HOST",
    "port": "RCON_PORT",
    "password": "RCON_PASSWORD",
    "transport": "RCON_TRANSPORT",
    "secure": "RCON_SECURE",
    "timeout_ms": "TIMEOUT_MS",
    "attempts_per_cycle": "ATTEMPTS_PER_CYCLE",
    "jitter_ms": "JITTER_MS",
    "failure_threshold": "CONSECUTIVE_FAILURES_THRESHOLD",
    "check_interval": "CHECK_INTERVAL",
    "command": "RCON_COMMAND",
    "heartbeat_url": "UPTIME_ENDPOINT",
    "client_name": "RCON_CLIENT_NAME",
    "history_file": "HISTORY_FILE",
    "status_host": "STATUS_HOST",
    "status_port": "STATUS_PORT",
    "log_level": "LOG_LEVEL",
}


class MonitorConfig(BaseModel):
    host: str
    port: int
    password: str
    heartbeat_url: str
    transport: Transport = Transport.WEB
    secure: bool = False
    timeout_ms: int = 5000
    attempts_per_cycle: int = 3
    jitter_ms: int = 300
    failure_threshold: int = 2
    check_interval: float = 60
    command: str = "status"
    client_name: str = "monitor"
    history_file: Optional[str] = None
    status_host: str = "0.0.0.0"
    status_port: int = 8000
    log_level: str = "INFO"

    class Config:
        frozen = True

    @field_validator("host", "command", "client_name")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("port", "status_port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not (1 <= v <= 65535):
            raise ValueError("Port out of range (1-65535)")
        return v

    @field_validator("transport", mode="before")
    @classmethod
    def normalize_transport(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("timeout_ms", "check_interval")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than 0")
        return v

    @field_validator("attempts_per_cycle", "failure_threshold")
    @classmethod
    def validate_at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("jitter_ms")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator("heartbeat_url")
    @classmethod
    def validate_heartbeat_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("must be an http:// or https:// URL")
        try:
            url = httpx.URL(v)
        except httpx.InvalidURL as e:
            raise ValueError(f"not a valid URL: {e}") from e
        if not url.host:
            raise ValueError("URL has no host")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return v

    @model_validator(mode="after")
    def validate_secure_transport(self):
        if self.secure and self.transport is Transport.CLASSIC:
            raise ValueError("secure sockets are only supported by the web transport")
        return self

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(host=self.host, port=self.port, secure=self.secure, credential=self.password)

    @property
    def timeout(self) -> float:
        """Per-operation timeout in seconds"""
        return self.timeout_ms / 1000.0

    @property
    def jitter_max(self) -> float:
        """Upper bound (exclusive) of the inter-attempt delay in seconds"""
        return self.jitter_ms / 1000.0

    def describe(self) -> dict:
        """Settings safe to log or expose (no password)"""
        data = self.model_dump(exclude={"password"})
        data["transport"] = self.transport.value
        return data


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        field = str(err["loc"][0]) if err["loc"] else "config"
        name = ENV_FIELDS.get(field, field)
        parts.append(f"{name}: {err['msg']}")
    return "; ".join(parts)


def load_config(environ: Optional[Mapping[str, str]] = None) -> MonitorConfig:
    """
    Build the configuration from environment variables.

    Empty values count as unset so that defaults apply.

    Raises:
        ConfigurationError: a required variable is missing or a value is invalid
    """
    if environ is None:
        environ = os.environ

    raw = {}
    for field, name in ENV_FIELDS.items():
        value = environ.get(name)
        if value is None or str(value).strip() == "":
            continue
        raw[field] = str(value).strip()

    try:
        config = MonitorConfig(**raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {_format_errors(e)}") from e

    logger.debug(f"Configuration loaded: {config.describe()}")
    return config
