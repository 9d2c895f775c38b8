"""
Peer registry: endpoint -> logical peer, created on first contact.
"""
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from loguru import logger as log

from .common import Endpoint, Position, ORIGIN, get_time_ms, format_endpoint

SpawnCallback = Callable[[Endpoint], Any]


@dataclass
class PeerEntity:
    """A remote peer and the handle the embedding layer uses to draw it."""
    endpoint: Endpoint
    position: Position = ORIGIN
    handle: Any = None
    updates: int = 0
    last_seen_ms: int = 0


MoveCallback = Callable[[PeerEntity], None]


class RegistrySnapshot:
    """
    Point-in-time read of all tracked peers.

    Iterating yields (endpoint, position) pairs and may be repeated; later
    registry changes are not reflected.
    """

    def __init__(self, items: Tuple[Tuple[Endpoint, Position], ...]):
        self._items = items

    def __iter__(self) -> Iterator[Tuple[Endpoint, Position]]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, endpoint: object) -> bool:
        return any(ep == endpoint for ep, _ in self._items)

    def endpoints(self) -> List[Endpoint]:
        return [ep for ep, _ in self._items]


class PeerRegistry:
    """
    Mapping from Endpoint to PeerEntity.

    Grows monotonically for the lifetime of the session. Mutation and
    snapshot creation share one lock so that a host running a separate
    network thread has a single exclusion boundary around ingest/broadcast.
    """

    def __init__(
        self,
        *,
        spawn_cb: Optional[SpawnCallback] = None,
        move_cb: Optional[MoveCallback] = None
    ):
        """
        Args:
            spawn_cb: Called once per newly discovered endpoint; its return
                value is stored as the entity's handle
            move_cb: Called after every position update with the entity
        """
        self.spawn_cb = spawn_cb
        self.move_cb = move_cb
        self._peers: Dict[Endpoint, PeerEntity] = {}
        self._lock = threading.RLock()

    def ensure(self, endpoint: Endpoint) -> PeerEntity:
        """Return the entity for endpoint, creating it at the origin if new."""
        with self._lock:
            entity = self._peers.get(endpoint)
            if entity is None:
                entity = PeerEntity(endpoint=endpoint)
                if self.spawn_cb:
                    entity.handle = self.spawn_cb(endpoint)
                self._peers[endpoint] = entity
                log.info("New peer {}", format_endpoint(endpoint))
            return entity

    def is_known(self, endpoint: Endpoint) -> bool:
        with self._lock:
            return endpoint in self._peers

    def set_position(self, endpoint: Endpoint, position: Position) -> PeerEntity:
        """Store the latest position for endpoint, registering it if needed."""
        with self._lock:
            entity = self.ensure(endpoint)
            entity.position = position
            entity.updates += 1
            entity.last_seen_ms = get_time_ms()
        if self.move_cb:
            self.move_cb(entity)
        return entity

    def get(self, endpoint: Endpoint) -> Optional[PeerEntity]:
        with self._lock:
            return self._peers.get(endpoint)

    def snapshot(self) -> RegistrySnapshot:
        with self._lock:
            return RegistrySnapshot(
                tuple((ep, entity.position) for ep, entity in self._peers.items())
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, endpoint: object) -> bool:
        with self._lock:
            return endpoint in self._peers

    def __iter__(self) -> Iterator[Endpoint]:
        with self._lock:
            return iter(list(self._peers))
