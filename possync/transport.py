"""
Non-blocking UDP transport.

Wraps a single datagram socket. Sends are fire-and-forget and receives
drain whatever is queued right now, so neither ever stalls the tick.
"""
import socket as socket_module
from typing import Any, Dict, Iterator, Optional, Tuple

from loguru import logger as log

from .common import Endpoint, TransportError, merge_config, normalize_endpoint, format_endpoint


class DatagramTransport:
    """
    UDP socket bound to a local endpoint.

    Usage:
        with DatagramTransport(("0.0.0.0", 44445)) as transport:
            transport.send(peer, data)
            for addr, data in transport.receive_all():
                ...
    """

    def __init__(self, bind_addr: Tuple[str, int], config: Optional[Dict[str, Any]] = None):
        """
        Initialize transport (socket is created by open()).

        Args:
            bind_addr: Local (host, port) tuple; port 0 picks an ephemeral port
            config: Optional config overrides
        """
        self.bind_addr = bind_addr
        self.config = merge_config(config)
        self.sock: Optional[socket_module.socket] = None

        # Statistics
        self.stats: Dict[str, int] = {
            "tx_datagrams": 0,
            "tx_bytes": 0,
            "tx_errors": 0,
            "rx_datagrams": 0,
            "rx_bytes": 0,
            "rx_errors": 0,
        }

    def open(self) -> "DatagramTransport":
        """
        Create and bind the socket.

        Raises:
            TransportError: if the socket cannot be created or bound
        """
        if self.sock is not None:
            return self
        sock = socket_module.socket(socket_module.AF_INET, socket_module.SOCK_DGRAM)
        try:
            try:
                sock.setsockopt(socket_module.SOL_SOCKET, socket_module.SO_RCVBUF,
                                self.config["socket_rcvbuf"])
                sock.setsockopt(socket_module.SOL_SOCKET, socket_module.SO_SNDBUF,
                                self.config["socket_sndbuf"])
            except OSError as exc:
                log.debug("Could not set socket buffer sizes: {}", exc)
            sock.bind(self.bind_addr)
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise TransportError(
                f"Cannot bind UDP socket to {format_endpoint(self.bind_addr)}: {exc}"
            ) from exc

        self.sock = sock
        log.debug("UDP socket bound to {}", format_endpoint(self.local_endpoint))
        return self

    @property
    def local_endpoint(self) -> Optional[Endpoint]:
        if self.sock is None:
            return None
        return normalize_endpoint(self.sock.getsockname())

    @property
    def closed(self) -> bool:
        return self.sock is None

    def send(self, endpoint: Endpoint, data: bytes) -> None:
        """
        Send one datagram.

        Raises:
            TransportError: on oversized payload, closed socket, or OS refusal
        """
        if self.sock is None:
            raise TransportError("Transport is closed")
        if len(data) > self.config["mtu"]:
            self.stats["tx_errors"] += 1
            raise TransportError(f"Payload too large: {len(data)} > {self.config['mtu']}")
        try:
            self.sock.sendto(data, endpoint)
        except OSError as exc:
            # BlockingIOError (full send buffer) is an OSError too
            self.stats["tx_errors"] += 1
            raise TransportError(f"Send to {format_endpoint(endpoint)} failed: {exc}") from exc
        self.stats["tx_datagrams"] += 1
        self.stats["tx_bytes"] += len(data)

    def receive_all(self) -> Iterator[Tuple[Endpoint, bytes]]:
        """
        Yield every (source, payload) pair queued right now.

        Stops at the first would-block or after max_drain datagrams,
        whichever comes first.

        Raises:
            TransportError: on a receive failure other than would-block
        """
        if self.sock is None:
            raise TransportError("Transport is closed")
        bufsize = max(self.config["mtu"], 2048)
        for _ in range(self.config["max_drain"]):
            try:
                data, addr = self.sock.recvfrom(bufsize)
            except BlockingIOError:
                return
            except OSError as exc:
                self.stats["rx_errors"] += 1
                raise TransportError(f"Receive failed: {exc}") from exc
            self.stats["rx_datagrams"] += 1
            self.stats["rx_bytes"] += len(data)
            yield normalize_endpoint(addr), data

    def pending_limit_reached(self, drained: int) -> bool:
        return drained >= self.config["max_drain"]

    def close(self) -> None:
        """Close the socket. Safe to call more than once."""
        if self.sock is not None:
            self.sock.close()
            self.sock = None

    def __enter__(self) -> "DatagramTransport":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
