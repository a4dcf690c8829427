"""RCON protocol client exports"""
from config import Transport
from errors import ConfigurationError
from .base import AuthState, CommandExchange, ProtocolClient
from .classic import ClassicRconClient
from .web import WebRconClient

CLIENTS = {
    Transport.CLASSIC: ClassicRconClient,
    Transport.WEB: WebRconClient,
}


def create_client(transport: Transport, client_name: str = "monitor") -> ProtocolClient:
    """Build a fresh, unconnected client for the configured transport."""
    try:
        client_cls = CLIENTS[Transport(transport)]
    except (KeyError, ValueError):
        raise ConfigurationError(f"Unknown RCON_TRANSPORT: {transport}") from None
    return client_cls(client_name=client_name)


__all__ = ['AuthState', 'CommandExchange', 'ProtocolClient', 'ClassicRconClient',
           'WebRconClient', 'create_client']
