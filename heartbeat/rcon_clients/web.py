"""WebRCON: JSON messages over a WebSocket"""
import asyncio
import json
import logging
from typing import Any, Dict

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from config import Endpoint
from errors import ErrorKind, ProtocolError, RconConnectionError
from .base import CLOSE_TIMEOUT, AuthState, CommandExchange, ProtocolClient

logger = logging.getLogger("RconHeartbeat.WebRcon")

AUTH_IDENTIFIER = 1
# The server answers the auth message with Identifier -1, accepted or not
AUTH_ACK_IDENTIFIER = -1


def build_url(endpoint: Endpoint) -> str:
    scheme = "wss" if endpoint.secure else "ws"
    host = endpoint.host
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"{scheme}://{host}:{endpoint.port}"


def parse_message(raw: Any) -> Dict[str, Any]:
    """
    Decode one WebRCON frame.

    Unknown fields are kept and ignored. Raises ProtocolError(MALFORMED) for
    anything that is not a JSON object with an integer Identifier and a
    string Message.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(ErrorKind.MALFORMED, f"WebRCON frame is not UTF-8: {e}") from e
    try:
        msg = json.loads(raw)
    except ValueError as e:
        raise ProtocolError(ErrorKind.MALFORMED, f"WebRCON parse error: {e}") from e

    if not isinstance(msg, dict):
        raise ProtocolError(ErrorKind.MALFORMED, "WebRCON frame is not a JSON object")

    identifier = msg.get("Identifier")
    if identifier is not None and (isinstance(identifier, bool) or not isinstance(identifier, int)):
        raise ProtocolError(ErrorKind.MALFORMED, f"WebRCON Identifier is not an integer: {identifier!r}")

    message = msg.get("Message")
    if message is not None and not isinstance(message, str):
        raise ProtocolError(ErrorKind.MALFORMED, "WebRCON Message is not a string")

    return msg


class WebRconClient(ProtocolClient):
    """WebRCON client. One socket, one auth message, one command."""
    transport = "web"

    def __init__(self, client_name: str = "monitor"):
        # Command identifiers start above the auth identifier
        super().__init__(client_name, first_request_id=AUTH_IDENTIFIER + 1)
        self._ws = None

    async def _open(self, endpoint: Endpoint) -> None:
        url = build_url(endpoint)
        try:
            self._ws = await websockets.connect(
                url,
                open_timeout=None,
                close_timeout=CLOSE_TIMEOUT,
                ping_interval=None,
            )
        except (OSError, WebSocketException) as e:
            raise RconConnectionError(f"Could not open WebRCON socket at {url}: {e}") from e

    async def _authenticate(self, credential: str) -> None:
        try:
            await self._send({
                "Identifier": AUTH_IDENTIFIER,
                "Message": credential,
                "Name": self.client_name,
                "Type": "auth",
            })
            while True:
                msg = await self._recv()
                if msg.get("Identifier") == AUTH_ACK_IDENTIFIER:
                    break
                logger.debug(f"Ignoring message before auth acknowledgment: Identifier={msg.get('Identifier')}")
        except ConnectionClosed as e:
            self._set_auth_state(AuthState.REJECTED)
            raise ProtocolError(ErrorKind.AUTH_REJECTED, f"WebRCON connection closed before auth: {e}") from e

        self._set_auth_state(AuthState.AUTHENTICATED)
        logger.debug("WebRCON auth acknowledged")

    async def _execute(self, exchange: CommandExchange) -> str:
        try:
            await self._send({
                "Identifier": exchange.request_id,
                "Message": exchange.command,
                "Name": self.client_name,
                "Type": "command",
            })
            while True:
                msg = await self._recv()
                if msg.get("Identifier") == exchange.request_id:
                    return msg.get("Message") or ""
                logger.debug(f"Ignoring unrelated message: Identifier={msg.get('Identifier')}")
        except ConnectionClosed as e:
            raise RconConnectionError(f"WebRCON connection closed before command response: {e}") from e

    async def _teardown(self, force: bool) -> None:
        if self._ws is None:
            return
        ws, self._ws = self._ws, None
        if force:
            ws.transport.abort()
            return
        try:
            await asyncio.wait_for(ws.close(), timeout=CLOSE_TIMEOUT)
        except (asyncio.TimeoutError, WebSocketException):
            ws.transport.abort()

    async def _send(self, payload: Dict[str, Any]) -> None:
        await self._ws.send(json.dumps(payload))
        logger.debug(f"Sent {payload['Type']} message Identifier={payload['Identifier']}")

    async def _recv(self) -> Dict[str, Any]:
        return parse_message(await self._ws.recv())
