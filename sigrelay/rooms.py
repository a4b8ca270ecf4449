"""Room management for the signalling relay.

This module handles all room-related functionality including:
- Room creation on first join and capacity limits
- Membership tracking, kept symmetric with each peer's ``rooms`` set
- Host privileges (lock, kick)
- Room destruction when emptied, when the host leaves, or when reaped
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .constants import (
    K_ALIAS,
    K_HOST,
    K_ID,
    K_LOCKED,
    K_PEERS,
    K_ROOM,
    T_JOIN,
    T_KICKED,
    T_LEAVE,
    T_LOCK,
    T_PEER_CONNECT,
    T_PEER_DISCONNECT,
    T_PEER_LIST,
)
from .envelope import make_envelope
from .errors import CannotKickSelf, NotHost, PeerNotFound, RoomFull, RoomLocked, ServerFull

if TYPE_CHECKING:
    from .messages import Outgoing
    from .peers import Peer
    from .service import RelayService


@dataclass(eq=False)
class Room:
    id: str
    host: str
    locked: bool = False
    members: set[str] = field(default_factory=set)
    created_at: float = field(default_factory=time.monotonic)


class RoomManager:
    """Manages rooms and the membership engine.

    A room is either absent from ``rooms`` or active in it; there is no
    intermediate state. Every operation validates first and mutates second,
    so a rejected operation raises before changing anything. All methods must
    be called with the state lock held.
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("sigrelay.rooms")
        self.rooms: dict[str, Room] = {}

    def clear_all(self) -> None:
        """Clear all room state. Called during relay shutdown."""
        self.rooms.clear()

    def get(self, room_id: str) -> Room | None:
        return self.rooms.get(room_id)

    def get_stats(self) -> dict[str, Any]:
        rooms_total = len(self.rooms)
        memberships = sum(len(r.members) for r in self.rooms.values())
        locked = sum(1 for r in self.rooms.values() if r.locked)
        top_rooms = sorted(
            ((room_id, len(r.members)) for room_id, r in self.rooms.items()),
            key=lambda x: (-x[1], x[0]),
        )[:5]
        return {
            "rooms_total": rooms_total,
            "memberships": memberships,
            "locked": locked,
            "top_rooms": top_rooms,
        }

    def _peer_alias(self, peer_id: str) -> str | None:
        p = self.relay.peer_registry.lookup(peer_id)
        return p.alias if p is not None else None

    def join_or_create(self, peer: Peer, room_id: str, outgoing: Outgoing) -> Room:
        cfg = self.relay.config
        helper = self.relay.message_helper

        room = self.rooms.get(room_id)
        rejoin = room is not None and peer.id in room.members

        if room is None:
            if len(self.rooms) >= int(cfg.max_rooms):
                raise ServerFull()
        elif not rejoin:
            if len(room.members) >= int(cfg.max_peers_per_room):
                raise RoomFull()
            if room.locked and room.host != peer.id:
                raise RoomLocked()

        if room is None:
            room = Room(id=room_id, host=peer.id)
            self.rooms[room_id] = room
            self.log.info("Room created room=%s host=%s", room_id, peer.id)

        room.members.add(peer.id)
        peer.rooms.add(room_id)

        is_host = room.host == peer.id
        helper.queue_env(
            outgoing,
            peer.connection,
            make_envelope(T_JOIN, **{K_ROOM: room_id, K_ID: peer.id, K_HOST: is_host}),
        )

        others = [
            {K_ID: pid, K_ALIAS: self._peer_alias(pid)}
            for pid in sorted(room.members)
            if pid != peer.id
        ]
        if others:
            helper.queue_env(
                outgoing, peer.connection, make_envelope(T_PEER_LIST, **{K_PEERS: others})
            )

        if not rejoin:
            helper.broadcast(
                outgoing,
                room,
                make_envelope(T_PEER_CONNECT, **{K_ID: peer.id, K_ALIAS: peer.alias}),
                exclude=peer.id,
            )

        return room

    def _remove_member(self, room: Room, peer_id: str, outgoing: Outgoing) -> bool:
        """Drop a member, tell the rest, and destroy the room if it may not outlive this.

        Returns True if the room was destroyed.
        """
        room.members.discard(peer_id)
        p = self.relay.peer_registry.lookup(peer_id)
        if p is not None:
            p.rooms.discard(room.id)

        self.relay.message_helper.broadcast(
            outgoing, room, make_envelope(T_PEER_DISCONNECT, **{K_ID: peer_id})
        )

        if not room.members or room.host == peer_id:
            self.destroy(room.id)
            return True
        return False

    def leave(self, peer: Peer, room_id: str, outgoing: Outgoing) -> bool:
        room = self.rooms.get(room_id)
        if room is None or peer.id not in room.members:
            return False

        destroyed = self._remove_member(room, peer.id, outgoing)
        self.relay.message_helper.queue_env(
            outgoing, peer.connection, make_envelope(T_LEAVE, **{K_ROOM: room_id})
        )
        self.log.info(
            "LEAVE peer=%s room=%s destroyed=%s", peer.id, room_id, destroyed
        )
        return True

    def _require_host(self, peer: Peer, room_id: str) -> Room:
        room = self.rooms.get(room_id)
        if room is None or room.host != peer.id:
            raise NotHost()
        return room

    def kick(self, peer: Peer, room_id: str, target_id: str, outgoing: Outgoing) -> None:
        room = self._require_host(peer, room_id)
        if target_id == room.host:
            raise CannotKickSelf()
        if target_id not in room.members:
            raise PeerNotFound()

        target = self.relay.peer_registry.lookup(target_id)
        if target is not None and target.connection.is_open:
            self.relay.message_helper.queue_env(
                outgoing, target.connection, make_envelope(T_KICKED, **{K_ROOM: room_id})
            )

        # The host is still a member, so this never destroys the room.
        self._remove_member(room, target_id, outgoing)
        self.log.info("KICK host=%s target=%s room=%s", peer.id, target_id, room_id)

    def set_locked(
        self, peer: Peer, room_id: str, locked: bool, outgoing: Outgoing
    ) -> None:
        room = self._require_host(peer, room_id)
        room.locked = bool(locked)
        self.relay.message_helper.broadcast(
            outgoing,
            room,
            make_envelope(T_LOCK, **{K_ROOM: room_id, K_LOCKED: room.locked}),
        )
        self.log.info("LOCK host=%s room=%s locked=%s", peer.id, room_id, room.locked)

    def remove_from_all(self, peer: Peer, outgoing: Outgoing) -> int:
        """Remove a departing peer from every room. Returns number of rooms left."""
        room_ids = sorted(peer.rooms)
        for room_id in room_ids:
            room = self.rooms.get(room_id)
            if room is None:
                peer.rooms.discard(room_id)
                continue
            self._remove_member(room, peer.id, outgoing)
        peer.rooms.clear()
        return len(room_ids)

    def destroy(self, room_id: str) -> bool:
        """Remove a room and detach its remaining members. No notifications."""
        room = self.rooms.pop(room_id, None)
        if room is None:
            return False
        for peer_id in room.members:
            p = self.relay.peer_registry.lookup(peer_id)
            if p is not None:
                p.rooms.discard(room_id)
        room.members.clear()
        self.log.info("Room removed room=%s", room_id)
        return True

    def reap_expired(self, now: float, max_age_s: float) -> list[str]:
        """
        Destroy rooms older than ``max_age_s`` without notifying members.

        Returns list of reaped room ids.
        """
        expired = [
            room_id
            for room_id, room in self.rooms.items()
            if (now - room.created_at) > max_age_s
        ]
        for room_id in expired:
            self.destroy(room_id)
        return expired
