from __future__ import annotations

import json

import pytest

from sigrelay.codec import encode
from sigrelay.config import RelayRuntimeConfig
from sigrelay.constants import CLOSE_NORMAL
from sigrelay.service import RelayService


class FakeConnection:
    """In-memory stand-in for WebSocketConnection."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.sent: list[dict] = []
        self.open = True
        self.acked = True
        self.probes = 0
        self.closed_with: tuple[int, str] | None = None
        self._outbox: list[str] = []

    @property
    def is_open(self) -> bool:
        return self.open

    def enqueue(self, payload: str) -> None:
        self._outbox.append(payload)

    def flush(self) -> None:
        while self._outbox:
            payload = self._outbox.pop(0)
            if self.open:
                self.sent.append(json.loads(payload))

    def probe(self) -> None:
        self.probes += 1
        self.acked = False

    def acknowledged(self) -> bool:
        return self.acked

    def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        self.open = False
        self.closed_with = (code, reason)

    def take(self) -> list[dict]:
        out, self.sent = self.sent, []
        return out

    def __repr__(self) -> str:
        return f"<FakeConnection {self.name}>"


class Client:
    def __init__(self, relay: RelayService, name: str) -> None:
        self.relay = relay
        self.conn = FakeConnection(name)
        self.id: str | None = None
        relay.on_connect(self.conn)

    def send(self, **msg) -> None:
        self.relay.on_message(self.conn, encode(msg))

    def send_raw(self, data: str | bytes) -> None:
        self.relay.on_message(self.conn, data)

    def login(self, alias: str | None = None, peer_id: str | None = None) -> dict:
        msg: dict = {"type": "login"}
        if alias is not None:
            msg["alias"] = alias
        if peer_id is not None:
            msg["id"] = peer_id
        self.send(**msg)
        reply = self.conn.sent[-1]
        assert reply["type"] == "login"
        self.id = reply["id"]
        return reply

    def take(self) -> list[dict]:
        return self.conn.take()

    def disconnect(self) -> None:
        self.conn.open = False
        self.relay.on_close(self.conn)

    @property
    def peer(self):
        return self.relay.peer_registry.lookup(self.id)


@pytest.fixture
def make_relay():
    def _make(**overrides) -> RelayService:
        return RelayService(RelayRuntimeConfig(**overrides))

    return _make


@pytest.fixture
def relay(make_relay) -> RelayService:
    return make_relay()


@pytest.fixture
def make_client(relay):
    def _make(name: str = "client", *, on: RelayService | None = None) -> Client:
        return Client(on if on is not None else relay, name)

    return _make


@pytest.fixture
def logged_in(make_client):
    """Return a factory for clients that have already logged in, inbox drained."""

    def _make(alias: str, *, on: RelayService | None = None) -> Client:
        c = make_client(alias, on=on)
        c.login(alias=alias)
        c.take()
        return c

    return _make


def assert_consistent(relay: RelayService) -> None:
    rooms = relay.room_manager.rooms
    for peer in relay.peer_registry.peers():
        for room_id in peer.rooms:
            assert room_id in rooms
            assert peer.id in rooms[room_id].members
    for room_id, room in rooms.items():
        assert room.members
        assert room.host in room.members
        assert len(room.members) <= relay.config.max_peers_per_room
        for peer_id in room.members:
            peer = relay.peer_registry.lookup(peer_id)
            assert peer is not None
            assert room_id in peer.rooms
    assert len(rooms) <= relay.config.max_rooms


@pytest.fixture
def consistent():
    return assert_consistent
