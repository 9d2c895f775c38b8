"""
Common constants, types, errors, and utilities for possync.
"""
import math
import time
from enum import Enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

# ============================================================================
# Protocol Constants
# ============================================================================

DEFAULT_PORT = 44445
PROTOCOL_VERSION = 1

# Default configuration values
DEFAULT_CONFIG = {
    "port": DEFAULT_PORT,
    "tick_hz": 50,            # fixed tick rate (20 ms per tick)
    "mtu": 1200,
    "max_drain": 1024,        # max datagrams consumed per tick
    "socket_rcvbuf": 1 << 20,
    "socket_sndbuf": 1 << 20,
}

# (ip address, port)
Endpoint = Tuple[str, int]

LogCallback = Callable[[Dict[str, Any]], None]


# ============================================================================
# Enums
# ============================================================================

class Role(Enum):
    """Which side of the session this process plays."""
    SERVER = "server"
    CLIENT = "client"


# ============================================================================
# Errors
# ============================================================================

class PossyncError(Exception):
    """Base class for possync errors."""


class TransportError(PossyncError):
    """Send/receive failure: unreachable, refused, closed, or oversized."""


class DecodeError(PossyncError):
    """Malformed or truncated wire payload."""


class SessionStartError(PossyncError):
    """The session could not be started (port in use, unknown host)."""


# ============================================================================
# Data Structures
# ============================================================================

@dataclass(frozen=True)
class Position:
    """A point in 2D/3D space. 2D callers leave z at 0."""
    x: float
    y: float
    z: float = 0.0

    def is_finite(self) -> bool:
        return all(math.isfinite(c) for c in (self.x, self.y, self.z))

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def __str__(self) -> str:
        return f"({self.x:.2f}, {self.y:.2f}, {self.z:.2f})"


ORIGIN = Position(0.0, 0.0, 0.0)


# ============================================================================
# Utility Functions
# ============================================================================

def get_time_ms() -> int:
    """Get current time in milliseconds (modulo 2^32 for uint32)."""
    return int(time.time() * 1000) % (2**32)


def normalize_endpoint(addr: tuple) -> Endpoint:
    """
    Reduce a socket address to an (ip, port) Endpoint.

    IPv6 addresses come back from the socket layer as 4-tuples
    (host, port, flowinfo, scope_id); only host and port identify a peer.
    """
    return (str(addr[0]), int(addr[1]))


def format_endpoint(endpoint: Optional[Endpoint]) -> str:
    if endpoint is None:
        return "-"
    return f"{endpoint[0]}:{endpoint[1]}"


def merge_config(config: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Overlay caller overrides on DEFAULT_CONFIG."""
    return {**DEFAULT_CONFIG, **(config or {})}
