"""Connection handles for the relay.

The relay core only needs a handle it can queue payloads on, flush, probe
for liveness and close. ``WebSocketConnection`` adapts a connection from the
``websockets`` threading server to that shape.
"""

from __future__ import annotations

import logging
import threading
from collections import deque

from websockets.exceptions import ConnectionClosed
from websockets.protocol import State
from websockets.sync.server import ServerConnection

from .constants import CLOSE_NORMAL

log = logging.getLogger("sigrelay.connection")


class WebSocketConnection:
    def __init__(self, ws: ServerConnection) -> None:
        self.ws = ws
        self._outbox: deque[str] = deque()
        self._send_lock = threading.Lock()
        self._pong_waiter: threading.Event | None = None

    @property
    def conn_id(self) -> str:
        return str(self.ws.id)[:8]

    @property
    def remote_address(self) -> str:
        headers = getattr(self.ws.request, "headers", None)
        forwarded = headers.get("X-Forwarded-For") if headers is not None else None
        if forwarded:
            return forwarded.split(",")[0].strip()
        addr = self.ws.remote_address
        if isinstance(addr, tuple) and addr:
            return str(addr[0])
        return "-"

    @property
    def is_open(self) -> bool:
        return self.ws.state is State.OPEN

    def enqueue(self, payload: str) -> None:
        """Append a payload to the outbox. Must be called with the state lock held."""
        self._outbox.append(payload)

    def flush(self) -> None:
        """Write queued payloads to the socket in FIFO order."""
        with self._send_lock:
            while self._outbox:
                payload = self._outbox.popleft()
                if not self.is_open:
                    self._outbox.clear()
                    return
                try:
                    self.ws.send(payload)
                except ConnectionClosed:
                    log.debug("Send on closed connection conn_id=%s", self.conn_id)
                    self._outbox.clear()
                    return
                except OSError as e:
                    log.warning(
                        "Send failed conn_id=%s bytes=%s err=%s",
                        self.conn_id,
                        len(payload),
                        e,
                    )
                    self._outbox.clear()
                    return

    def probe(self) -> None:
        """Send a WebSocket ping; ``acknowledged`` turns true when the pong arrives."""
        try:
            self._pong_waiter = self.ws.ping()
        except ConnectionClosed:
            self._pong_waiter = threading.Event()

    def acknowledged(self) -> bool:
        return self._pong_waiter is None or self._pong_waiter.is_set()

    def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        # close() blocks for the closing handshake; keep callers off the state lock.
        try:
            self.ws.close(code=code, reason=reason)
        except OSError:
            log.debug("Close failed conn_id=%s", self.conn_id, exc_info=True)

    def __repr__(self) -> str:
        return f"<WebSocketConnection {self.conn_id} {self.remote_address}>"
