"""Error taxonomy for liveness checks"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification carried by every per-attempt error"""
    CONNECTION = "connection"
    AUTH_REJECTED = "auth_rejected"
    MALFORMED = "malformed"
    TIMEOUT = "timeout"


class RconError(Exception):
    """Base class for errors raised while talking to the RCON endpoint"""
    kind: ErrorKind = ErrorKind.CONNECTION

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class RconConnectionError(RconError, ConnectionError):
    """Transport could not be established or dropped unexpectedly"""
    kind = ErrorKind.CONNECTION


class ProtocolError(RconError):
    """Authentication rejected, malformed frame, or no answer in time"""

    def __init__(self, kind: ErrorKind, message: str):
        if kind is ErrorKind.CONNECTION:
            raise ValueError("Use RconConnectionError for transport failures")
        super().__init__(message, kind)


class ConfigurationError(Exception):
    """Invalid or missing setting. Fatal at startup."""


class HeartbeatDeliveryError(Exception):
    """The check succeeded but the uptime collector could not be notified"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
