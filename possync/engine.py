"""
possync Sync Engine: ServerSync and ClientSync.

Both are driven by a plain synchronous tick() called once per fixed
interval by an external scheduler. Network I/O inside a tick is
non-blocking, and per-datagram failures are logged and counted but never
abort the tick.

- Server: drain reports -> update registry -> relay every peer to every other peer
- Client: drain relays -> update registry -> report own position to the server
"""
from enum import Enum
from typing import Any, Callable, Dict, Optional

from loguru import logger as log

from .common import (
    Endpoint, Position, LogCallback, DecodeError, TransportError,
    format_endpoint
)
from .codec import MessageType, Message, decode_message, encode_relay, encode_report
from .registry import PeerRegistry
from .transport import DatagramTransport

PositionSource = Callable[[], Position]


class TickPhase(Enum):
    """Where a tick currently is. Only IDLE is observable between ticks."""
    IDLE = "idle"
    INGESTING = "ingesting"
    BROADCASTING = "broadcasting"
    REPORTING = "reporting"


# ============================================================================
# Engine Base
# ============================================================================

class SyncEngine:
    """
    Shared ingest path: drain, decode-or-drop, ensure + set_position.
    Subclasses decide which message type they accept and how the peer is keyed.
    """

    accepts: MessageType

    def __init__(
        self,
        transport: DatagramTransport,
        registry: PeerRegistry,
        log_cb: Optional[LogCallback] = None
    ):
        self.transport = transport
        self.registry = registry
        self.log_cb = log_cb
        self.phase = TickPhase.IDLE
        self.ticks = 0

        # Statistics
        self.stats: Dict[str, int] = {
            "rx_total": 0,
            "rx_accepted": 0,
            "drop_malformed": 0,
            "drop_unexpected": 0,
            "drop_foreign": 0,
            "tx_total": 0,
            "tx_failed": 0,
            "recv_failed": 0,
            "peers_discovered": 0,
            "drop_local": 0,
        }

    def log_event(self, event: Dict[str, Any]) -> None:
        """Log an event if log_cb is provided."""
        if self.log_cb:
            self.log_cb(event)

    def tick(self) -> int:
        raise NotImplementedError

    def _peer_for(self, source: Endpoint, message: Message) -> Optional[Endpoint]:
        """Endpoint the message describes, or None to drop it."""
        raise NotImplementedError

    def _ingest(self) -> int:
        """Drain all queued datagrams into the registry. Returns accepted count."""
        self.phase = TickPhase.INGESTING
        accepted = 0
        drained = 0
        try:
            for source, data in self.transport.receive_all():
                drained += 1
                self.stats["rx_total"] += 1
                if self._accept(source, data):
                    accepted += 1
        except TransportError as exc:
            self.stats["recv_failed"] += 1
            log.warning("Receive failed, ending ingest for this tick: {}", exc)
            self.log_event({"event": "recv_failed", "error": str(exc)})

        if self.transport.pending_limit_reached(drained):
            log.debug("Drain limit reached after {} datagrams", drained)
            self.log_event({"event": "drain_limit", "drained": drained})
        return accepted

    def _accept(self, source: Endpoint, data: bytes) -> bool:
        try:
            message = decode_message(data)
        except DecodeError as exc:
            self.stats["drop_malformed"] += 1
            log.warning("Dropping malformed datagram from {}: {}", format_endpoint(source), exc)
            self.log_event({
                "event": "drop_malformed",
                "source": source,
                "bytes": len(data),
                "error": str(exc)
            })
            return False

        if message.kind != self.accepts:
            self.stats["drop_unexpected"] += 1
            log.warning("Dropping unexpected {} from {}", message.kind.name, format_endpoint(source))
            self.log_event({"event": "drop_unexpected", "source": source, "kind": message.kind.name})
            return False

        peer = self._peer_for(source, message)
        if peer is None:
            return False

        is_new = not self.registry.is_known(peer)
        self.registry.set_position(peer, message.position)
        self.stats["rx_accepted"] += 1
        if is_new:
            self.stats["peers_discovered"] += 1
            self.log_event({"event": "peer_discovered", "peer": peer})
        self.log_event({
            "event": "rx_report" if message.kind == MessageType.REPORT else "rx_relay",
            "source": source,
            "peer": peer,
            "position": message.position.as_tuple()
        })
        return True

    def _encode_local(self, encode: Callable[..., bytes], *args) -> Optional[bytes]:
        """Encode the local player's datagram, or None if its position can't be sent."""
        try:
            return encode(*args)
        except ValueError as exc:
            self.stats["drop_local"] += 1
            log.warning("Skipping local position: {}", exc)
            self.log_event({"event": "drop_local", "error": str(exc)})
            return None

    def _send(self, endpoint: Endpoint, data: bytes, event: str, **fields) -> bool:
        """Send one datagram; failures are logged and counted, not raised."""
        try:
            self.transport.send(endpoint, data)
        except TransportError as exc:
            self.stats["tx_failed"] += 1
            log.warning("Send to {} failed: {}", format_endpoint(endpoint), exc)
            self.log_event({"event": "send_failed", "to": endpoint, "error": str(exc), **fields})
            return False
        self.stats["tx_total"] += 1
        self.log_event({"event": event, "to": endpoint, "bytes": len(data), **fields})
        return True


# ============================================================================
# Server Implementation
# ============================================================================

class ServerSync(SyncEngine):
    """
    Host-authoritative relay.

    Peers join implicitly: the first valid report from an endpoint registers
    it. With a position_source the host also plays, and its position is
    relayed to every peer under host_endpoint.
    """

    accepts = MessageType.REPORT

    def __init__(
        self,
        transport: DatagramTransport,
        registry: PeerRegistry,
        *,
        position_source: Optional[PositionSource] = None,
        host_endpoint: Optional[Endpoint] = None,
        log_cb: Optional[LogCallback] = None
    ):
        super().__init__(transport, registry, log_cb)
        self.position_source = position_source
        self.host_endpoint = host_endpoint

    def _peer_for(self, source: Endpoint, message: Message) -> Optional[Endpoint]:
        return source

    def tick(self) -> int:
        """Run one ingest + broadcast cycle. Returns datagrams sent."""
        try:
            self._ingest()
            return self._broadcast()
        finally:
            self.phase = TickPhase.IDLE
            self.ticks += 1

    def _broadcast(self) -> int:
        self.phase = TickPhase.BROADCASTING
        snapshot = self.registry.snapshot()
        sent = 0

        for origin, position in snapshot:
            payload = encode_relay(origin, position)
            for target in snapshot.endpoints():
                if target == origin:
                    continue
                if self._send(target, payload, "tx_relay", peer=origin):
                    sent += 1

        if self.position_source is not None:
            host = self.host_endpoint or self.transport.local_endpoint
            payload = self._encode_local(encode_relay, host, self.position_source())
            if payload is not None:
                for target in snapshot.endpoints():
                    if self._send(target, payload, "tx_relay", peer=host):
                        sent += 1

        return sent


# ============================================================================
# Client Implementation
# ============================================================================

class ClientSync(SyncEngine):
    """
    Joining peer: applies relays from the server and reports its own position.

    Relayed peers are keyed by the endpoint carried in each relay, since
    every relay arrives from the server's address.
    """

    accepts = MessageType.RELAY

    def __init__(
        self,
        transport: DatagramTransport,
        registry: PeerRegistry,
        server_endpoint: Endpoint,
        position_source: PositionSource,
        *,
        log_cb: Optional[LogCallback] = None
    ):
        super().__init__(transport, registry, log_cb)
        self.server_endpoint = server_endpoint
        self.position_source = position_source

    def _peer_for(self, source: Endpoint, message: Message) -> Optional[Endpoint]:
        if source != self.server_endpoint:
            self.stats["drop_foreign"] += 1
            log.warning("Dropping datagram from non-server {}", format_endpoint(source))
            self.log_event({"event": "drop_foreign", "source": source})
            return None
        return message.peer

    def tick(self) -> int:
        """Apply queued relays, then report. Returns datagrams sent (0 or 1)."""
        try:
            self._ingest()
            return self._report()
        finally:
            self.phase = TickPhase.IDLE
            self.ticks += 1

    def _report(self) -> int:
        self.phase = TickPhase.REPORTING
        position = self.position_source()
        payload = self._encode_local(encode_report, position)
        if payload is None:
            return 0
        sent = self._send(self.server_endpoint, payload, "tx_report",
                          position=position.as_tuple())
        return 1 if sent else 0
