"""Message queueing utilities for the relay."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .codec import encode
from .constants import K_MESSAGE, T_ERROR
from .envelope import make_envelope

if TYPE_CHECKING:
    from .rooms import Room
    from .service import RelayService

Outgoing = list[tuple[Any, str]]


class MessageHelper:
    """
    Builds outbound envelopes and queues them for delivery.

    Nothing here touches a socket: every method appends ``(connection,
    payload)`` pairs to an ``outgoing`` list, in the order they must reach
    each recipient. RelayService hands the list to the connections once the
    current operation is complete.
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay
        self.log = logging.getLogger("sigrelay.messages")

    def queue_payload(self, outgoing: Outgoing, conn: Any, payload: str) -> None:
        self.relay.stats_manager.inc("msgs_out")
        self.relay.stats_manager.inc("bytes_out", len(payload))
        outgoing.append((conn, payload))

    def queue_env(self, outgoing: Outgoing, conn: Any, env: dict) -> None:
        self.queue_payload(outgoing, conn, encode(env))

    def emit_error(self, outgoing: Outgoing, conn: Any, text: str) -> None:
        self.relay.stats_manager.inc("errors_sent")
        self.queue_env(outgoing, conn, make_envelope(T_ERROR, **{K_MESSAGE: text}))

    def broadcast(
        self,
        outgoing: Outgoing,
        room: Room,
        env: dict,
        *,
        exclude: str | None = None,
    ) -> int:
        """Queue ``env`` for every member of ``room`` except ``exclude``.

        Members without a registered peer or with a closed connection are
        skipped; the liveness monitor reconciles them separately.
        """
        payload = encode(env)
        sent = 0
        for peer_id in list(room.members):
            if peer_id == exclude:
                continue
            peer = self.relay.peer_registry.lookup(peer_id)
            if peer is None or not peer.connection.is_open:
                continue
            self.queue_payload(outgoing, peer.connection, payload)
            sent += 1
        return sent
