"""
Position codec and message framing for possync.

possync Datagram Format (5-byte header + peer address + 24-byte position):

 0                   1                   2                   3
 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1 2 3 4 5 6 7 8 9 0 1
+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
|    Version    |     Type      |  Address Len  |   Peer Port   |
|     (0x01)    | (REPORT/RELAY)|    (0-255)    |   (hi byte)   |
+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
|   (lo byte)   |        Peer Address (UTF-8, variable)         |
+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+
|              X, Y, Z (3 x float64, big-endian)                |
+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+-+

Header Fields:
- Byte 0:    Protocol version (PROTOCOL_VERSION)
- Byte 1:    Message type (0=REPORT client->server, 1=RELAY server->client)
- Byte 2:    Peer address length (0 for REPORT)
- Bytes 3-4: Peer port (uint16, big-endian; 0 for REPORT)
- Bytes 5+:  Peer address, then position

A REPORT is keyed by the datagram's source address on the server. A RELAY
names the peer it describes, because every relay reaches a client from the
server's own address.
"""
import math
import struct
from enum import IntEnum
from dataclasses import dataclass
from typing import Optional

from .common import Endpoint, Position, DecodeError, PROTOCOL_VERSION

# ============================================================================
# Protocol Constants
# ============================================================================

HEADER_FORMAT = '!BBBH'
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)  # 5 bytes

POSITION_FORMAT = '!ddd'
POSITION_SIZE = struct.calcsize(POSITION_FORMAT)  # 24 bytes

MAX_ADDRESS_LEN = 255


class MessageType(IntEnum):
    """Wire message types."""
    REPORT = 0
    RELAY = 1


@dataclass(frozen=True)
class Message:
    """Decoded datagram."""
    kind: MessageType
    peer: Optional[Endpoint]  # None for REPORT
    position: Position


# ============================================================================
# Position Codec
# ============================================================================

def encode_position(position: Position) -> bytes:
    """
    Encode a position into its 24-byte wire form.

    Raises:
        ValueError: if any component is NaN or infinite
    """
    if not position.is_finite():
        raise ValueError(f"Position is not finite: {position!r}")
    return struct.pack(POSITION_FORMAT, position.x, position.y, position.z)


def decode_position(data: bytes) -> Position:
    """
    Decode a 24-byte wire position.

    Raises:
        DecodeError: on wrong length or non-finite components
    """
    if len(data) != POSITION_SIZE:
        raise DecodeError(f"Position must be {POSITION_SIZE} bytes, got {len(data)}")
    x, y, z = struct.unpack(POSITION_FORMAT, data)
    if not all(math.isfinite(c) for c in (x, y, z)):
        raise DecodeError("Position has non-finite component")
    return Position(x, y, z)


# ============================================================================
# Message Framing
# ============================================================================

def encode_report(position: Position) -> bytes:
    """Encode a client's own position for the server."""
    header = struct.pack(HEADER_FORMAT, PROTOCOL_VERSION, MessageType.REPORT, 0, 0)
    return header + encode_position(position)


def encode_relay(peer: Endpoint, position: Position) -> bytes:
    """
    Encode another peer's position for relaying to a client.

    Args:
        peer: Endpoint of the peer the position belongs to
        position: That peer's latest position

    Returns:
        Encoded datagram bytes
    """
    host, port = peer
    address = host.encode('utf-8')
    if len(address) > MAX_ADDRESS_LEN:
        raise ValueError(f"Peer address too long: {len(address)} > {MAX_ADDRESS_LEN}")
    if not 0 <= port <= 0xFFFF:
        raise ValueError(f"Peer port out of range: {port}")
    header = struct.pack(HEADER_FORMAT, PROTOCOL_VERSION, MessageType.RELAY, len(address), port)
    return header + address + encode_position(position)


def decode_message(data: bytes) -> Message:
    """
    Decode a possync datagram.

    Raises:
        DecodeError: if the datagram is truncated, has trailing bytes, an
            unknown version or type, or a peer field inconsistent with its type
    """
    if len(data) < HEADER_SIZE:
        raise DecodeError(f"Datagram too short ({len(data)} bytes)")

    version, kind, address_len, port = struct.unpack(HEADER_FORMAT, data[:HEADER_SIZE])
    if version != PROTOCOL_VERSION:
        raise DecodeError(f"Unsupported protocol version {version}")
    try:
        kind = MessageType(kind)
    except ValueError:
        raise DecodeError(f"Unknown message type {kind}") from None

    expected = HEADER_SIZE + address_len + POSITION_SIZE
    if len(data) != expected:
        raise DecodeError(f"Datagram length {len(data)} != expected {expected}")

    peer = None
    if kind == MessageType.REPORT:
        if address_len or port:
            raise DecodeError("REPORT must not carry a peer")
    else:
        if address_len == 0:
            raise DecodeError("RELAY without peer address")
        try:
            host = data[HEADER_SIZE:HEADER_SIZE + address_len].decode('utf-8')
        except UnicodeDecodeError:
            raise DecodeError("Peer address is not valid UTF-8") from None
        peer = (host, port)

    position = decode_position(data[HEADER_SIZE + address_len:])
    return Message(kind=kind, peer=peer, position=position)
