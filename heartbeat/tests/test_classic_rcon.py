import asyncio
import socket
import struct

import pytest

from config import Endpoint
from errors import ErrorKind, ProtocolError, RconConnectionError
from rcon_clients import AuthState, ClassicRconClient
from rcon_clients.classic import (
    SERVERDATA_AUTH,
    SERVERDATA_EXECCOMMAND,
    pack_packet,
    unpack_payload,
)

TIMEOUT = 0.5


def endpoint_for(server, password="secret"):
    return Endpoint(host="127.0.0.1", port=server.port, secure=False, credential=password)


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


async def run_exchange(client, endpoint, command="status"):
    try:
        await client.connect(endpoint, TIMEOUT)
        await client.authenticate(endpoint.credential, TIMEOUT)
        return await client.execute_command(command, TIMEOUT)
    finally:
        await client.close()


def test_packet_layout():
    data = pack_packet(7, SERVERDATA_EXECCOMMAND, "status")
    (length,) = struct.unpack("<i", data[:4])
    # length covers id, type, body and both terminators
    assert length == 4 + 4 + len("status") + 2
    assert len(data) == length + 4
    assert data.endswith(b"status\x00\x00")
    assert unpack_payload(data[4:]) == (7, SERVERDATA_EXECCOMMAND, "status")


def test_unterminated_payload_is_malformed():
    payload = struct.pack("<ii", 1, 0) + b"abc"
    with pytest.raises(ProtocolError) as exc_info:
        unpack_payload(payload)
    assert exc_info.value.kind == ErrorKind.MALFORMED


@pytest.mark.asyncio
async def test_successful_exchange(classic_server):
    client = ClassicRconClient()
    response = await run_exchange(client, endpoint_for(classic_server))

    assert response == "hostname: Test Server"
    assert client.auth_state == AuthState.AUTHENTICATED
    assert client.exchange.response == response
    assert client.closed
    assert classic_server.received_types() == [SERVERDATA_AUTH, SERVERDATA_EXECCOMMAND]
    assert classic_server.received[1][2] == "status"


@pytest.mark.asyncio
async def test_empty_packet_before_auth_response_is_skipped(classic_server):
    classic_server.empty_before_auth = True
    response = await run_exchange(ClassicRconClient(), endpoint_for(classic_server))
    assert response == "hostname: Test Server"


@pytest.mark.asyncio
async def test_auth_rejected_never_sends_command(classic_server):
    client = ClassicRconClient()
    endpoint = endpoint_for(classic_server, password="wrong")

    await client.connect(endpoint, TIMEOUT)
    with pytest.raises(ProtocolError) as exc_info:
        await client.authenticate(endpoint.credential, TIMEOUT)

    assert exc_info.value.kind == ErrorKind.AUTH_REJECTED
    assert client.auth_state == AuthState.REJECTED
    # The session closes itself on rejection
    assert client.closed
    with pytest.raises(RuntimeError):
        await client.execute_command("status", TIMEOUT)

    await asyncio.sleep(0.05)
    assert SERVERDATA_EXECCOMMAND not in classic_server.received_types()


@pytest.mark.asyncio
async def test_unrelated_packets_ignored(classic_server):
    classic_server.noise_before_response = True
    response = await run_exchange(ClassicRconClient(), endpoint_for(classic_server))
    assert response == "hostname: Test Server"


@pytest.mark.asyncio
async def test_split_response_is_concatenated(classic_server):
    # A body of exactly 4096 bytes marks a split response
    first = "a" * 4096
    classic_server.fragments = [first, "tail"]
    response = await run_exchange(ClassicRconClient(), endpoint_for(classic_server))
    assert response == first + "tail"


@pytest.mark.asyncio
async def test_full_fragment_without_continuation_returns_collected(classic_server):
    first = "b" * 4096
    classic_server.fragments = [first]
    response = await run_exchange(ClassicRconClient(), endpoint_for(classic_server))
    assert response == first


@pytest.mark.asyncio
async def test_body_below_fragment_size_is_complete(classic_server):
    first = "c" * 4095
    classic_server.fragments = [first, "tail"]
    response = await run_exchange(ClassicRconClient(), endpoint_for(classic_server))
    assert response == first


@pytest.mark.asyncio
async def test_command_timeout(classic_server):
    classic_server.command_silent = True
    client = ClassicRconClient()
    with pytest.raises(ProtocolError) as exc_info:
        await run_exchange(client, endpoint_for(classic_server))
    assert exc_info.value.kind == ErrorKind.TIMEOUT
    assert client.closed


@pytest.mark.asyncio
async def test_auth_timeout(classic_server):
    classic_server.auth_silent = True
    with pytest.raises(ProtocolError) as exc_info:
        await run_exchange(ClassicRconClient(), endpoint_for(classic_server))
    assert exc_info.value.kind == ErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_bad_length_is_malformed(classic_server):
    classic_server.raw_command_reply = struct.pack("<i", 3) + b"xyz"
    with pytest.raises(ProtocolError) as exc_info:
        await run_exchange(ClassicRconClient(), endpoint_for(classic_server))
    assert exc_info.value.kind == ErrorKind.MALFORMED


@pytest.mark.asyncio
async def test_connection_refused():
    client = ClassicRconClient()
    endpoint = Endpoint(host="127.0.0.1", port=free_port(), secure=False, credential="secret")
    with pytest.raises(RconConnectionError) as exc_info:
        await client.connect(endpoint, TIMEOUT)
    assert exc_info.value.kind == ErrorKind.CONNECTION
    await client.close()


@pytest.mark.asyncio
async def test_close_is_idempotent(classic_server):
    client = ClassicRconClient()
    await client.connect(endpoint_for(classic_server), TIMEOUT)
    await client.close()
    await client.close()
    assert client.closed


@pytest.mark.asyncio
async def test_sessions_are_single_use(classic_server):
    client = ClassicRconClient()
    await run_exchange(client, endpoint_for(classic_server))
    with pytest.raises(RuntimeError):
        await client.connect(endpoint_for(classic_server), TIMEOUT)
