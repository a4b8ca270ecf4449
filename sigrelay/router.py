from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .codec import decode
from .constants import (
    K_ALIAS,
    K_DATA,
    K_FROM,
    K_ICE_SERVERS,
    K_ID,
    K_KICK,
    K_LOCKED,
    K_ROOM,
    K_TO,
    K_TYPE,
    T_JOIN,
    T_KICK,
    T_LEAVE,
    T_LOCK,
    T_LOGIN,
    T_SIGNAL,
)
from .envelope import make_envelope, validate_envelope
from .errors import NotLoggedIn, PeerNotFound, RelayError

if TYPE_CHECKING:
    from .messages import Outgoing
    from .peers import Peer
    from .service import RelayService


class MessageRouter:
    """
    Handles message routing and dispatching for the relay.

    This class is responsible for:
    - Decoding and validating incoming frames
    - Dispatching messages by type (login, join, leave, signal, kick, lock)
    - Enforcing the login requirement
    - Turning rejected operations into a single error reply
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("sigrelay.router")
        self._handlers = {
            T_JOIN: self._handle_join,
            T_LEAVE: self._handle_leave,
            T_SIGNAL: self._handle_signal,
            T_KICK: self._handle_kick,
            T_LOCK: self._handle_lock,
        }

    def route_message(self, conn: Any, data: str | bytes, outgoing: Outgoing) -> None:
        """
        Main entry point for routing an incoming frame.

        This method should be called with the state lock held.
        """
        if not self.relay.peer_registry.is_attached(conn):
            return

        self.relay.stats_manager.inc("msgs_in")
        self.relay.stats_manager.inc("bytes_in", len(data))

        try:
            env = decode(data)
            validate_envelope(env, max_room_name_len=self.relay.config.max_room_name_len)
        except ValueError as e:
            # ProtocolError, JSONDecodeError and UnicodeDecodeError all land here.
            self.relay.stats_manager.inc("msgs_bad")
            self.log.debug(
                "Bad message conn=%r bytes=%s err=%s", conn, len(data), e
            )
            return

        t = env.get(K_TYPE)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX conn=%r t=%s room=%r bytes=%s",
                conn,
                t,
                env.get(K_ROOM),
                len(data),
            )

        try:
            if t == T_LOGIN:
                self._handle_login(conn, env, outgoing)
                return

            handler = self._handlers.get(t)
            if handler is None:
                # Clients on another protocol revision may send types we do not know.
                self.relay.stats_manager.inc("msgs_unknown")
                self.log.debug("Ignoring unknown message type conn=%r t=%r", conn, t)
                return

            peer = self.relay.peer_registry.peer_for(conn)
            if peer is None:
                raise NotLoggedIn()
            handler(peer, env, outgoing)
        except RelayError as e:
            self.log.debug("Rejected conn=%r t=%s reason=%s", conn, t, e.text)
            self.relay.message_helper.emit_error(outgoing, conn, e.text)

    def _handle_login(self, conn: Any, env: dict, outgoing: Outgoing) -> None:
        peer = self.relay.peer_registry.register(conn, env.get(K_ID), env.get(K_ALIAS))
        self.relay.stats_manager.inc("logins")

        self.log.info("LOGIN peer=%s alias=%r conn=%r", peer.id, peer.alias, conn)

        self.relay.message_helper.queue_env(
            outgoing,
            conn,
            make_envelope(
                T_LOGIN,
                **{
                    K_ID: peer.id,
                    K_ICE_SERVERS: [dict(s) for s in self.relay.config.ice_servers],
                },
            ),
        )

    def _handle_join(self, peer: Peer, env: dict, outgoing: Outgoing) -> None:
        room_id = env[K_ROOM]
        room = self.relay.room_manager.join_or_create(peer, room_id, outgoing)
        self.relay.stats_manager.inc("joins")
        self.log.info(
            "JOIN peer=%s alias=%r room=%s host=%s members=%s",
            peer.id,
            peer.alias,
            room_id,
            room.host == peer.id,
            len(room.members),
        )

    def _handle_leave(self, peer: Peer, env: dict, outgoing: Outgoing) -> None:
        if self.relay.room_manager.leave(peer, env[K_ROOM], outgoing):
            self.relay.stats_manager.inc("leaves")

    def _handle_signal(self, peer: Peer, env: dict, outgoing: Outgoing) -> None:
        target = self.relay.peer_registry.lookup(env[K_TO])
        if target is None:
            raise PeerNotFound()

        if target.connection.is_open:
            self.relay.message_helper.queue_env(
                outgoing,
                target.connection,
                make_envelope(T_SIGNAL, **{K_FROM: peer.id, K_DATA: env[K_DATA]}),
            )
            self.relay.stats_manager.inc("signals_forwarded")

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("SIGNAL from=%s to=%s", peer.id, target.id)

    def _handle_kick(self, peer: Peer, env: dict, outgoing: Outgoing) -> None:
        self.relay.room_manager.kick(peer, env[K_ROOM], env[K_KICK], outgoing)
        self.relay.stats_manager.inc("kicks")

    def _handle_lock(self, peer: Peer, env: dict, outgoing: Outgoing) -> None:
        self.relay.room_manager.set_locked(peer, env[K_ROOM], env[K_LOCKED], outgoing)
