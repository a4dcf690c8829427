"""Classic (Source-style) binary RCON over TCP"""
import asyncio
import contextlib
import logging
import struct
from typing import List, Optional, Tuple

from config import Endpoint
from errors import ErrorKind, ProtocolError, RconConnectionError
from .base import CLOSE_TIMEOUT, AuthState, CommandExchange, ProtocolClient

logger = logging.getLogger("RconHeartbeat.ClassicRcon")

# Source RCON packet types
SERVERDATA_RESPONSE_VALUE = 0
SERVERDATA_EXECCOMMAND = 2
SERVERDATA_AUTH_RESPONSE = 2  # shares its value with EXECCOMMAND
SERVERDATA_AUTH = 3

AUTH_FAILED_ID = -1

# id + type + two null terminators
MIN_PACKET_LENGTH = 10
MAX_PACKET_LENGTH = 65536
# Servers split long responses into packets carrying this many body bytes
FRAGMENT_LENGTH = 4096
# How long to wait for the next fragment of a split response
FRAGMENT_WAIT = 0.25


def pack_packet(req_id: int, req_type: int, body: str) -> bytes:
    payload = struct.pack("<ii", req_id, req_type) + body.encode("utf-8") + b"\x00\x00"
    return struct.pack("<i", len(payload)) + payload


def unpack_payload(payload: bytes) -> Tuple[int, int, str]:
    """Split a packet payload (everything after the length field)."""
    if not payload.endswith(b"\x00\x00"):
        raise ProtocolError(ErrorKind.MALFORMED, "Packet body is not null-terminated")
    req_id, req_type = struct.unpack("<ii", payload[:8])
    body = payload[8:-2]  # strip 2 null terminators
    return req_id, req_type, body.decode("utf-8", errors="replace")


class ClassicRconClient(ProtocolClient):
    """Length-prefixed binary RCON over a raw TCP stream"""
    transport = "classic"

    def __init__(self, client_name: str = "monitor"):
        super().__init__(client_name)
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def _open(self, endpoint: Endpoint) -> None:
        try:
            self._reader, self._writer = await asyncio.open_connection(endpoint.host, endpoint.port)
        except OSError as e:
            raise RconConnectionError(f"Could not connect to {endpoint.host}:{endpoint.port}: {e}") from e

    async def _authenticate(self, credential: str) -> None:
        auth_id = self._next_id()
        await self._send(auth_id, SERVERDATA_AUTH, credential)

        while True:
            rid, rtype, _ = await self._read_packet()
            if rid == AUTH_FAILED_ID:
                self._set_auth_state(AuthState.REJECTED)
                raise ProtocolError(ErrorKind.AUTH_REJECTED, "RCON auth failed (bad password)")
            if rtype != SERVERDATA_AUTH_RESPONSE:
                # Some servers send an empty RESPONSE_VALUE before the auth response
                logger.debug(f"Skipping packet type={rtype} id={rid} while authenticating")
                continue
            if rid != auth_id:
                raise ProtocolError(ErrorKind.MALFORMED, f"Auth response for unknown request id {rid}")
            self._set_auth_state(AuthState.AUTHENTICATED)
            logger.debug("Classic RCON authenticated")
            return

    async def _execute(self, exchange: CommandExchange) -> str:
        await self._send(exchange.request_id, SERVERDATA_EXECCOMMAND, exchange.command)

        parts: List[str] = []
        split = False
        while True:
            if split:
                try:
                    rid, rtype, body, length = await asyncio.wait_for(
                        self._read_packet_with_length(), timeout=FRAGMENT_WAIT)
                except asyncio.TimeoutError:
                    break
            else:
                rid, rtype, body, length = await self._read_packet_with_length()

            if rid != exchange.request_id or rtype != SERVERDATA_RESPONSE_VALUE:
                logger.debug(f"Ignoring unrelated packet type={rtype} id={rid}")
                continue

            parts.append(body)
            split = length - MIN_PACKET_LENGTH >= FRAGMENT_LENGTH
            if not split:
                break

        return "".join(parts)

    async def _teardown(self, force: bool) -> None:
        if self._writer is None:
            return
        writer, self._writer = self._writer, None
        if force:
            writer.transport.abort()
        else:
            writer.close()
        with contextlib.suppress(OSError, asyncio.TimeoutError):
            await asyncio.wait_for(writer.wait_closed(), timeout=CLOSE_TIMEOUT)

    async def _send(self, req_id: int, req_type: int, body: str) -> None:
        try:
            self._writer.write(pack_packet(req_id, req_type, body))
            await self._writer.drain()
        except OSError as e:
            raise RconConnectionError(f"Connection lost while sending: {e}") from e
        logger.debug(f"Sent packet type={req_type} id={req_id}")

    async def _read_packet(self) -> Tuple[int, int, str]:
        rid, rtype, body, _ = await self._read_packet_with_length()
        return rid, rtype, body

    async def _read_packet_with_length(self) -> Tuple[int, int, str, int]:
        try:
            (length,) = struct.unpack("<i", await self._reader.readexactly(4))
            if not (MIN_PACKET_LENGTH <= length <= MAX_PACKET_LENGTH):
                raise ProtocolError(ErrorKind.MALFORMED, f"Invalid packet length {length}")
            payload = await self._reader.readexactly(length)
        except asyncio.IncompleteReadError as e:
            raise RconConnectionError("Socket closed while reading") from e
        except OSError as e:
            raise RconConnectionError(f"Connection lost while reading: {e}") from e

        rid, rtype, body = unpack_payload(payload)
        logger.debug(f"Received packet type={rtype} id={rid} length={length}")
        return rid, rtype, body, length
