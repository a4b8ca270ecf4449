from __future__ import annotations

import logging
import signal
import ssl
import threading
import time
from http import HTTPStatus
from typing import Any

from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response
from websockets.sync.server import Server, ServerConnection, serve

from .config import RelayRuntimeConfig
from .connection import WebSocketConnection
from .constants import CLOSE_GOING_AWAY, CLOSE_NORMAL
from .messages import MessageHelper, Outgoing
from .peers import Peer, PeerRegistry
from .rooms import RoomManager
from .router import MessageRouter
from .stats import StatsManager
from .util import expand_path

# Upper bound on the closing handshake with an unresponsive client.
CLOSE_TIMEOUT_S = 5.0


class RelayService:
    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("sigrelay.relay")

        # Peers, rooms and counters are touched from every connection thread
        # and from the maintenance threads. Guard them with a single
        # re-entrant lock; membership changes always span both registries.
        self._state_lock = threading.RLock()

        self._shutdown = threading.Event()

        self.stats_manager = StatsManager(self)
        self.message_helper = MessageHelper(self)
        self.peer_registry = PeerRegistry(self)
        self.room_manager = RoomManager(self)
        self.router = MessageRouter(self)

        self._server: Server | None = None
        self._serve_thread: threading.Thread | None = None
        self._ping_thread: threading.Thread | None = None
        self._reap_thread: threading.Thread | None = None

    @property
    def bound_port(self) -> int | None:
        if self._server is None:
            return None
        return int(self._server.socket.getsockname()[1])

    def start(self) -> None:
        self.stats_manager.set_start_time()

        ssl_context = self._build_ssl_context()
        self._server = serve(
            self._handle_connection,
            self.config.host,
            int(self.config.port),
            ssl=ssl_context,
            process_request=self._process_request if self.config.status_page else None,
            compression=None,
            max_size=int(self.config.max_message_bytes),
            # Liveness is handled by our own sweep, not the library keepalive.
            ping_interval=None,
            close_timeout=CLOSE_TIMEOUT_S,
        )
        self._serve_thread = threading.Thread(
            target=self._server.serve_forever, name="sigrelay-serve", daemon=True
        )
        self._serve_thread.start()

        scheme = "wss" if ssl_context is not None else "ws"
        self.log.info(
            "Relay running url=%s://%s:%s status_page=%s",
            scheme,
            self.config.host,
            self.bound_port,
            self.config.status_page,
        )
        self.log.info(
            "Policy max_rooms=%s max_peers_per_room=%s room_timeout_s=%s ping_interval_s=%s",
            self.config.max_rooms,
            self.config.max_peers_per_room,
            self.config.room_timeout_s,
            self.config.ping_interval_s,
        )

        if self.config.ping_interval_s and self.config.ping_interval_s > 0:
            self._ping_thread = threading.Thread(
                target=self._ping_loop, name="sigrelay-ping", daemon=True
            )
            self._ping_thread.start()

        if (
            self.config.room_reap_interval_s
            and self.config.room_reap_interval_s > 0
            and self.config.room_timeout_s
            and self.config.room_timeout_s > 0
        ):
            self._reap_thread = threading.Thread(
                target=self._reap_loop, name="sigrelay-room-reap", daemon=True
            )
            self._reap_thread.start()

    def _build_ssl_context(self) -> ssl.SSLContext | None:
        key_file = self.config.ssl_key_file
        cert_file = self.config.ssl_cert_file
        if not key_file and not cert_file:
            return None
        if not key_file or not cert_file:
            raise ValueError("ssl_key_file and ssl_cert_file must be set together")

        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        ctx.load_cert_chain(expand_path(cert_file), expand_path(key_file))
        return ctx

    def run_forever(self) -> None:
        if self._server is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

        self.log.info("Relay stopped")

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()
        self.log.info("Shutting down")

        # Taking the lock waits for any in-flight message handler to finish.
        with self._state_lock:
            conns = self.peer_registry.clear_all()
            self.room_manager.clear_all()

        for conn in conns:
            conn.close(CLOSE_NORMAL, "server shutting down")

        if self._server is not None:
            self._server.shutdown()

    def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        # Plain HTTP requests get the status page; upgrades proceed to the handshake.
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None
        return connection.respond(HTTPStatus.OK, self.stats_manager.format_stats())

    def _handle_connection(self, ws: ServerConnection) -> None:
        conn = WebSocketConnection(ws)
        if not self.on_connect(conn):
            conn.close(CLOSE_GOING_AWAY, "server shutting down")
            return
        try:
            for data in ws:
                self.on_message(conn, data)
        except ConnectionClosed:
            pass
        finally:
            self.on_close(conn)

    def on_connect(self, conn: Any) -> bool:
        with self._state_lock:
            if self._shutdown.is_set():
                return False
            self.peer_registry.attach(conn)
            self.stats_manager.inc("connections_opened")

        self.log.info("Connection opened conn=%r", conn)
        return True

    def on_message(self, conn: Any, data: str | bytes) -> None:
        # Mutate and queue under the lock, write to sockets after releasing it.
        outgoing: Outgoing = []
        with self._state_lock:
            try:
                self.router.route_message(conn, data, outgoing)
            except Exception:
                self.log.exception("Unhandled error routing message conn=%r", conn)
            self._enqueue(outgoing)

        if self.log.isEnabledFor(logging.DEBUG) and outgoing:
            self.log.debug("Sending %d message(s) conn=%r", len(outgoing), conn)

        self._flush(outgoing)

    def on_close(self, conn: Any) -> None:
        outgoing: Outgoing = []
        with self._state_lock:
            known = self.peer_registry.is_attached(conn)
            peer, rooms_count = self._disconnect_locked(conn, outgoing)
            self._enqueue(outgoing)
        self._flush(outgoing)

        if known:
            self.log.info(
                "Connection closed peer=%s alias=%r rooms=%s conn=%r",
                peer.id if peer else "-",
                peer.alias if peer else None,
                rooms_count,
                conn,
            )

    def _disconnect_locked(
        self, conn: Any, outgoing: Outgoing
    ) -> tuple[Peer | None, int]:
        """
        Forget a connection and reconcile its peer's rooms.

        Idempotent: a connection already detached is ignored.
        Must be called with state lock held.
        """
        if not self.peer_registry.is_attached(conn):
            return None, 0

        peer = self.peer_registry.detach(conn)
        self.stats_manager.inc("connections_closed")
        if peer is None:
            return None, 0

        rooms_count = self.room_manager.remove_from_all(peer, outgoing)
        self.peer_registry.unregister(peer.id)
        return peer, rooms_count

    def _enqueue(self, outgoing: Outgoing) -> None:
        for conn, payload in outgoing:
            conn.enqueue(payload)

    def _flush(self, outgoing: Outgoing) -> None:
        for conn in dict.fromkeys(c for c, _ in outgoing):
            conn.flush()

    def liveness_sweep(self) -> list[Any]:
        """
        Close connections that never answered the previous probe, probe the rest.

        Returns the connections that were closed.
        """
        to_close: list[Any] = []
        to_probe: list[Any] = []
        outgoing: Outgoing = []

        with self._state_lock:
            for conn in self.peer_registry.connections():
                if not conn.acknowledged():
                    peer, _ = self._disconnect_locked(conn, outgoing)
                    self.stats_manager.inc("liveness_timeouts")
                    self.log.info(
                        "Liveness timeout peer=%s conn=%r",
                        peer.id if peer else "-",
                        conn,
                    )
                    to_close.append(conn)
                    continue
                to_probe.append(conn)
            self._enqueue(outgoing)

        self._flush(outgoing)

        for conn in to_close:
            conn.close(CLOSE_GOING_AWAY, "liveness timeout")

        for conn in to_probe:
            conn.probe()
            self.stats_manager.inc("probes_sent")

        return to_close

    def reap_sweep(self, now: float | None = None) -> list[str]:
        """Destroy rooms older than room_timeout_s. Members are not notified."""
        max_age = float(self.config.room_timeout_s)
        if max_age <= 0:
            return []
        ts = time.monotonic() if now is None else now

        with self._state_lock:
            reaped = self.room_manager.reap_expired(ts, max_age)
            if reaped:
                self.stats_manager.inc("rooms_reaped", len(reaped))

        for room_id in reaped:
            self.log.info("Reaped stale room %s", room_id)
        return reaped

    def _ping_loop(self) -> None:
        while not self._shutdown.is_set():
            interval = float(self.config.ping_interval_s)
            if interval <= 0:
                self._shutdown.wait(1.0)
                continue

            if self._shutdown.wait(interval):
                break
            try:
                self.liveness_sweep()
            except Exception:
                self.log.exception("Liveness sweep failed")

    def _reap_loop(self) -> None:
        while not self._shutdown.is_set():
            interval = float(self.config.room_reap_interval_s)
            if interval <= 0:
                self._shutdown.wait(1.0)
                continue

            if self._shutdown.wait(interval):
                break
            try:
                self.reap_sweep()
            except Exception:
                self.log.exception("Room reap failed")
