"""
possync: host-authoritative position synchronization over UDP

A host relays every joined peer's latest position to every other peer once
per fixed tick; peers report their own position to the host each tick.
"""

from .common import (
    Position, ORIGIN, Role, DEFAULT_CONFIG, DEFAULT_PORT,
    PossyncError, TransportError, DecodeError, SessionStartError
)
from .codec import encode_position, decode_position
from .registry import PeerEntity, PeerRegistry
from .engine import ServerSync, ClientSync, TickPhase
from .session import Session, start_as_server, start_as_client, get_local_address

__version__ = "1.0.0"
__all__ = [
    "Position", "ORIGIN", "Role", "DEFAULT_CONFIG", "DEFAULT_PORT",
    "PossyncError", "TransportError", "DecodeError", "SessionStartError",
    "encode_position", "decode_position",
    "PeerEntity", "PeerRegistry",
    "ServerSync", "ClientSync", "TickPhase",
    "Session", "start_as_server", "start_as_client", "get_local_address",
]
