from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .errors import AlreadyLoggedIn
from .util import new_peer_id, normalize_alias, normalize_peer_id

if TYPE_CHECKING:
    from .service import RelayService


@dataclass(eq=False)
class Peer:
    """A logged-in participant bound to exactly one connection."""

    id: str
    alias: str
    connection: Any
    rooms: set[str] = field(default_factory=set)


class PeerRegistry:
    """
    Tracks open connections and the peers registered on them.

    This class is responsible for:
    - Tracking every accepted connection, logged in or not
    - Assigning unique peer ids at login
    - Looking peers up by id or by connection
    - Forgetting peers and connections on disconnect

    Room membership is reconciled by the caller (see RoomManager).
    All methods must be called with the state lock held.
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("sigrelay.peers")
        self._by_conn: dict[Any, Peer | None] = {}
        self._by_id: dict[str, Peer] = {}

    def attach(self, conn: Any) -> None:
        self._by_conn.setdefault(conn, None)

    def detach(self, conn: Any) -> Peer | None:
        """Forget a connection. Returns its peer, which stays registered."""
        return self._by_conn.pop(conn, None)

    def is_attached(self, conn: Any) -> bool:
        return conn in self._by_conn

    def register(self, conn: Any, desired_id: Any = None, alias: Any = None) -> Peer:
        if self._by_conn.get(conn) is not None:
            raise AlreadyLoggedIn()

        cfg = self.relay.config
        peer_id = normalize_peer_id(desired_id, max_len=cfg.max_peer_id_len)
        if peer_id is not None and peer_id in self._by_id:
            self.log.debug("Requested id taken, assigning a fresh one id=%s", peer_id)
            peer_id = None
        while peer_id is None or peer_id in self._by_id:
            peer_id = new_peer_id()

        peer = Peer(
            id=peer_id,
            alias=normalize_alias(alias, max_chars=cfg.alias_max_chars),
            connection=conn,
        )
        self._by_id[peer_id] = peer
        self._by_conn[conn] = peer
        return peer

    def lookup(self, peer_id: str) -> Peer | None:
        return self._by_id.get(peer_id)

    def peer_for(self, conn: Any) -> Peer | None:
        return self._by_conn.get(conn)

    def unregister(self, peer_id: str) -> Peer | None:
        peer = self._by_id.pop(peer_id, None)
        if peer is not None and self._by_conn.get(peer.connection) is peer:
            self._by_conn[peer.connection] = None
        return peer

    def connections(self) -> list[Any]:
        return list(self._by_conn.keys())

    def peers(self) -> list[Peer]:
        return list(self._by_id.values())

    def clear_all(self) -> list[Any]:
        """Clear all state and return the connections for teardown."""
        conns = list(self._by_conn.keys())
        self._by_conn.clear()
        self._by_id.clear()
        return conns

    def get_stats(self) -> dict[str, int]:
        return {
            "connections": len(self._by_conn),
            "peers": len(self._by_id),
            "anonymous": sum(1 for p in self._by_conn.values() if p is None),
        }
