import asyncio
import json
import os
import struct
import sys
from typing import List, Optional

import pytest
import pytest_asyncio
import websockets
from websockets.exceptions import ConnectionClosed

# Ensure heartbeat modules are importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'heartbeat'))

from config import MonitorConfig
from rcon_clients.classic import (
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
    SERVERDATA_EXECCOMMAND,
    SERVERDATA_RESPONSE_VALUE,
    pack_packet,
    unpack_payload,
)
from trace_manager import trace_manager

PASSWORD = "secret"


class FakeClassicServer:
    """In-process classic RCON server. Tweak attributes before connecting."""

    def __init__(self):
        self.password = PASSWORD
        self.empty_before_auth = False
        self.auth_silent = False
        self.command_silent = False
        self.noise_before_response = False
        self.fragments: List[str] = ["hostname: Test Server"]
        self.raw_command_reply: Optional[bytes] = None
        self.received = []
        self.connections = 0
        self.port = None
        self._server = None
        self._writers = []

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        for writer in self._writers:
            writer.close()
        self._server.close()
        await self._server.wait_closed()

    def received_types(self):
        return [rtype for _, rtype, _ in self.received]

    async def _handle(self, reader, writer):
        self.connections += 1
        self._writers.append(writer)
        try:
            while True:
                (length,) = struct.unpack("<i", await reader.readexactly(4))
                rid, rtype, body = unpack_payload(await reader.readexactly(length))
                self.received.append((rid, rtype, body))

                if rtype == SERVERDATA_AUTH:
                    if self.auth_silent:
                        continue
                    if self.empty_before_auth:
                        writer.write(pack_packet(rid, SERVERDATA_RESPONSE_VALUE, ""))
                    reply_id = rid if body == self.password else -1
                    writer.write(pack_packet(reply_id, SERVERDATA_AUTH_RESPONSE, ""))
                elif rtype == SERVERDATA_EXECCOMMAND:
                    if self.command_silent:
                        continue
                    if self.raw_command_reply is not None:
                        writer.write(self.raw_command_reply)
                    else:
                        if self.noise_before_response:
                            writer.write(pack_packet(rid + 100, SERVERDATA_RESPONSE_VALUE, "unrelated"))
                        for fragment in self.fragments:
                            writer.write(pack_packet(rid, SERVERDATA_RESPONSE_VALUE, fragment))
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()


class FakeWebRconServer:
    """In-process WebRCON server. Tweak attributes before connecting."""

    def __init__(self):
        self.pre_ack_frames: List[str] = []
        self.close_before_ack = False
        self.send_ack = True
        self.before_response_frames: List[str] = []
        self.reply: Optional[str] = "hostname: Test Server"
        self.raw_reply: Optional[str] = None
        self.close_on_command = False
        self.received = []
        self.connections = 0
        self.port = None
        self._server = None

    async def start(self):
        self._server = await websockets.serve(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        self._server.close()
        await self._server.wait_closed()

    def received_types(self):
        return [msg.get("Type") for msg in self.received]

    async def _handle(self, ws):
        self.connections += 1
        try:
            async for raw in ws:
                msg = json.loads(raw)
                self.received.append(msg)

                if msg.get("Type") == "auth":
                    for frame in self.pre_ack_frames:
                        await ws.send(frame)
                    if self.close_before_ack:
                        await ws.close()
                        return
                    if self.send_ack:
                        await ws.send(json.dumps({"Identifier": -1, "Message": "", "Type": "Generic"}))
                elif msg.get("Type") == "command":
                    if self.close_on_command:
                        await ws.close()
                        return
                    for frame in self.before_response_frames:
                        await ws.send(frame)
                    if self.raw_reply is not None:
                        await ws.send(self.raw_reply)
                    elif self.reply is not None:
                        await ws.send(json.dumps({
                            "Identifier": msg["Identifier"],
                            "Message": self.reply,
                            "Type": "Generic",
                            "Stacktrace": "",
                        }))
        except ConnectionClosed:
            pass


@pytest_asyncio.fixture
async def classic_server():
    server = FakeClassicServer()
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def web_server():
    server = FakeWebRconServer()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
def make_config():
    """Factory for a valid MonitorConfig with fast test timings."""
    def _make(**overrides):
        values = {
            "host": "127.0.0.1",
            "port": 28016,
            "password": PASSWORD,
            "heartbeat_url": "http://collector.test/api/push/abc",
            "timeout_ms": 500,
            "attempts_per_cycle": 3,
            "jitter_ms": 0,
            "failure_threshold": 2,
        }
        values.update(overrides)
        return MonitorConfig(**values)
    return _make


@pytest.fixture(autouse=True)
def clear_trace():
    trace_manager.clear()
    yield
    trace_manager.clear()
