"""
Session bootstrap: choose the server or client role and wire up the
transport, registry, and sync engine for it.

The returned Session is an explicit context object; whoever owns the
fixed-interval loop calls session.tick(). run_until_shutdown() is provided
for hosts without their own loop.
"""
import asyncio
import signal
import socket as socket_module
from typing import Any, Dict, Optional

from loguru import logger as log

from .common import (
    Endpoint, Role, LogCallback, TransportError, SessionStartError,
    merge_config, format_endpoint
)
from .engine import ClientSync, PositionSource, ServerSync, SyncEngine
from .registry import MoveCallback, PeerRegistry, SpawnCallback
from .transport import DatagramTransport


# ============================================================================
# Helper Functions
# ============================================================================

def resolve_endpoint(host: str, port: int) -> Endpoint:
    """
    Resolve a host name or address to an IPv4 Endpoint.

    Raises:
        SessionStartError: if the name cannot be resolved
    """
    try:
        infos = socket_module.getaddrinfo(
            host, port, socket_module.AF_INET, socket_module.SOCK_DGRAM
        )
    except socket_module.gaierror as exc:
        raise SessionStartError(f"Cannot resolve host {host!r}: {exc}") from exc
    if not infos:
        raise SessionStartError(f"No IPv4 address for host {host!r}")
    address = infos[0][4]
    return (address[0], address[1])


def get_local_address() -> str:
    """
    Best-effort LAN address of this machine, for a host to show to joiners.

    Connecting a UDP socket sends nothing; it only makes the OS pick the
    outgoing interface.
    """
    sock = socket_module.socket(socket_module.AF_INET, socket_module.SOCK_DGRAM)
    try:
        sock.connect(("10.255.255.255", 1))
        return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"
    finally:
        sock.close()


def advertised_endpoint(local: Endpoint) -> Endpoint:
    """
    Endpoint peers should know this host by.

    A wildcard bind (0.0.0.0) is replaced by the LAN address; the port is kept.
    """
    host, port = local
    if host in ("0.0.0.0", ""):
        host = get_local_address()
    return (host, port)


# ============================================================================
# Session
# ============================================================================

class Session:
    """Everything one participant needs for the lifetime of a session."""

    def __init__(
        self,
        role: Role,
        engine: SyncEngine,
        transport: DatagramTransport,
        registry: PeerRegistry,
        config: Dict[str, Any],
        server_endpoint: Optional[Endpoint] = None
    ):
        self.role = role
        self.engine = engine
        self.transport = transport
        self.registry = registry
        self.config = config
        self.server_endpoint = server_endpoint
        self._shutdown: Optional[asyncio.Event] = None

    @property
    def local_endpoint(self) -> Optional[Endpoint]:
        return self.transport.local_endpoint

    @property
    def closed(self) -> bool:
        return self.transport.closed

    def tick(self) -> int:
        """Run one synchronization step for this role."""
        return self.engine.tick()

    def stop(self) -> None:
        """Ask run_until_shutdown() to return after the current tick."""
        if self._shutdown is not None:
            self._shutdown.set()

    async def run_until_shutdown(self, tick_hz: Optional[float] = None) -> None:
        """
        Call tick() at a fixed rate until SIGINT/SIGTERM or stop().

        Args:
            tick_hz: Ticks per second (defaults to config["tick_hz"])
        """
        interval = 1.0 / (tick_hz or self.config["tick_hz"])
        loop = asyncio.get_running_loop()
        self._shutdown = asyncio.Event()

        handlers_installed = False
        try:
            loop.add_signal_handler(signal.SIGINT, self.stop)
            loop.add_signal_handler(signal.SIGTERM, self.stop)
            handlers_installed = True
        except (NotImplementedError, RuntimeError):
            # no signal support off the main thread / on some platforms
            pass

        log.info("{} ticking at {:.0f} Hz", self.role.value, 1.0 / interval)
        try:
            next_tick = loop.time()
            while not self._shutdown.is_set():
                self.tick()
                next_tick += interval
                delay = next_tick - loop.time()
                if delay < 0:
                    # fell behind; don't try to catch up with a burst of ticks
                    next_tick = loop.time()
                    delay = 0
                try:
                    await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
        finally:
            if handlers_installed:
                loop.remove_signal_handler(signal.SIGINT)
                loop.remove_signal_handler(signal.SIGTERM)

    def close(self) -> None:
        """Stop ticking and release the socket. Safe to call more than once."""
        if not self.transport.closed:
            log.info("Closing {} session on {}", self.role.value,
                     format_endpoint(self.local_endpoint))
        self.stop()
        self.transport.close()

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ============================================================================
# Role Bootstrap
# ============================================================================

def _open_transport(bind_addr: Endpoint, config: Dict[str, Any]) -> DatagramTransport:
    transport = DatagramTransport(bind_addr, config)
    try:
        return transport.open()
    except TransportError as exc:
        raise SessionStartError(str(exc)) from exc


def start_as_server(
    position_source: Optional[PositionSource] = None,
    *,
    bind_ip: str = "0.0.0.0",
    port: Optional[int] = None,
    spawn_cb: Optional[SpawnCallback] = None,
    move_cb: Optional[MoveCallback] = None,
    log_cb: Optional[LogCallback] = None,
    config: Optional[Dict[str, Any]] = None
) -> Session:
    """
    Host a session on the well-known port.

    Args:
        position_source: Host player's live position; None makes the host a pure relay
        bind_ip: Local interface to bind
        port: UDP port (defaults to config["port"])
        spawn_cb: Peer-discovered factory, returns a visual handle
        move_cb: Called with the PeerEntity after each position update
        log_cb: Optional callback for protocol events
        config: Optional config overrides

    Raises:
        SessionStartError: if the port cannot be bound
    """
    config = merge_config(config)
    port = config["port"] if port is None else port
    transport = _open_transport((bind_ip, port), config)
    registry = PeerRegistry(spawn_cb=spawn_cb, move_cb=move_cb)
    engine = ServerSync(
        transport, registry,
        position_source=position_source,
        host_endpoint=advertised_endpoint(transport.local_endpoint),
        log_cb=log_cb
    )
    log.info("Hosting session on {}", format_endpoint(transport.local_endpoint))
    return Session(Role.SERVER, engine, transport, registry, config)


def start_as_client(
    server_address: str,
    position_source: PositionSource,
    *,
    port: Optional[int] = None,
    spawn_cb: Optional[SpawnCallback] = None,
    move_cb: Optional[MoveCallback] = None,
    log_cb: Optional[LogCallback] = None,
    config: Optional[Dict[str, Any]] = None
) -> Session:
    """
    Join the session hosted at server_address.

    Args:
        server_address: Host name or IP of the server
        position_source: Local player's live position
        port: Server UDP port (defaults to config["port"])
        spawn_cb: Peer-discovered factory, returns a visual handle
        move_cb: Called with the PeerEntity after each position update
        log_cb: Optional callback for protocol events
        config: Optional config overrides

    Raises:
        SessionStartError: if the host cannot be resolved or no local port is free
    """
    config = merge_config(config)
    port = config["port"] if port is None else port
    server_endpoint = resolve_endpoint(server_address, port)
    transport = _open_transport(("0.0.0.0", 0), config)
    registry = PeerRegistry(spawn_cb=spawn_cb, move_cb=move_cb)
    engine = ClientSync(
        transport, registry, server_endpoint, position_source,
        log_cb=log_cb
    )
    log.info("Joining session at {} from {}", format_endpoint(server_endpoint),
             format_endpoint(transport.local_endpoint))
    return Session(Role.CLIENT, engine, transport, registry, config,
                   server_endpoint=server_endpoint)
