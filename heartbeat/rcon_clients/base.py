"""Base classes for RCON protocol clients"""
import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Optional, TypeVar

from config import Endpoint
from errors import ErrorKind, ProtocolError, RconConnectionError, RconError

logger = logging.getLogger("RconHeartbeat.ProtocolClient")

T = TypeVar("T")

CLOSE_TIMEOUT = 1.0  # seconds allowed for a graceful close before aborting


class AuthState(str, Enum):
    PENDING = "pending"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"


@dataclass
class CommandExchange:
    """The single command sent during a session"""
    request_id: int
    command: str
    response: Optional[str] = None


class ProtocolClient:
    """
    One single-use RCON session: connect, authenticate, run one command, close.

    Subclasses implement the wire format in _open/_authenticate/_execute/_teardown.
    The public methods bound every operation by the given timeout and tear the
    connection down on any failure, so close() is only ever a no-op afterwards.
    """
    transport: str = ""

    def __init__(self, client_name: str = "monitor", first_request_id: int = 1):
        self.client_name = client_name
        self.endpoint: Optional[Endpoint] = None
        self.auth_state = AuthState.PENDING
        self.exchange: Optional[CommandExchange] = None
        self._ids = itertools.count(first_request_id)
        self._connected = False
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._connected and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    async def connect(self, endpoint: Endpoint, timeout: float) -> None:
        if self._connected or self._closed:
            raise RuntimeError("Protocol client sessions are single-use")
        self.endpoint = endpoint
        logger.debug(f"[{self.transport}] Connecting to {endpoint.host}:{endpoint.port}")
        await self._bounded(self._open(endpoint), timeout, "connect", connecting=True)
        self._connected = True

    async def authenticate(self, credential: str, timeout: float) -> None:
        if not self.connected:
            raise RuntimeError("authenticate() called without an open connection")
        if self.auth_state is not AuthState.PENDING:
            raise RuntimeError(f"Session already {self.auth_state.value}")
        await self._bounded(self._authenticate(credential), timeout, "authenticate")

    async def execute_command(self, command: str, timeout: float) -> str:
        if not self.connected or self.auth_state is not AuthState.AUTHENTICATED:
            raise RuntimeError("execute_command() requires an authenticated session")
        if self.exchange is not None:
            raise RuntimeError("Only one command may be executed per session")
        self.exchange = CommandExchange(request_id=self._next_id(), command=command)
        response = await self._bounded(self._execute(self.exchange), timeout, "command")
        self.exchange.response = response
        return response

    async def close(self) -> None:
        """Close the connection. Safe to call repeatedly and after any failure."""
        await self._shutdown(force=False)

    async def _shutdown(self, force: bool) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._teardown(force)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"[{self.transport}] Error while closing connection: {e}")

    async def _bounded(self, operation: Awaitable[T], timeout: float, what: str,
                       connecting: bool = False) -> T:
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except asyncio.TimeoutError:
            await self._shutdown(force=True)
            if connecting:
                raise RconConnectionError(f"Timed out establishing connection after {timeout:.2f}s")
            raise ProtocolError(ErrorKind.TIMEOUT, f"{what} timed out after {timeout:.2f}s")
        except RconError:
            await self._shutdown(force=True)
            raise

    def _next_id(self) -> int:
        return next(self._ids)

    def _set_auth_state(self, state: AuthState) -> None:
        if self.auth_state is not AuthState.PENDING:
            raise RuntimeError(f"Cannot move from {self.auth_state.value} to {state.value}")
        self.auth_state = state

    async def _open(self, endpoint: Endpoint) -> None:
        raise NotImplementedError("Subclasses must implement _open()")

    async def _authenticate(self, credential: str) -> None:
        raise NotImplementedError("Subclasses must implement _authenticate()")

    async def _execute(self, exchange: CommandExchange) -> str:
        raise NotImplementedError("Subclasses must implement _execute()")

    async def _teardown(self, force: bool) -> None:
        raise NotImplementedError("Subclasses must implement _teardown()")
