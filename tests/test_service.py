import json
import urllib.request

import pytest
from websockets.sync.client import connect

from sigrelay.config import RelayRuntimeConfig
from sigrelay.service import RelayService


@pytest.fixture
def running_relay():
    relay = RelayService(
        RelayRuntimeConfig(
            host="127.0.0.1",
            port=0,
            ping_interval_s=0,
            room_reap_interval_s=0,
        )
    )
    relay.start()
    try:
        yield relay
    finally:
        relay.stop()


def _recv(ws) -> dict:
    return json.loads(ws.recv(timeout=5))


def test_two_peers_join_and_signal_over_websockets(running_relay) -> None:
    url = f"ws://127.0.0.1:{running_relay.bound_port}"
    with connect(url) as a, connect(url) as b:
        a.send(json.dumps({"type": "login", "alias": "alice"}))
        a_id = _recv(a)["id"]
        b.send(json.dumps({"type": "login", "alias": "bob"}))
        b_id = _recv(b)["id"]

        a.send(json.dumps({"type": "join", "room": "r1"}))
        assert _recv(a) == {"type": "join", "room": "r1", "id": a_id, "host": True}

        b.send(json.dumps({"type": "join", "room": "r1"}))
        assert _recv(b)["type"] == "join"
        assert _recv(b) == {"type": "peer-list", "peers": [{"id": a_id, "alias": "alice"}]}
        assert _recv(a) == {"type": "peer-connect", "id": b_id, "alias": "bob"}

        a.send(json.dumps({"type": "signal", "to": b_id, "data": {"sdp": "offer"}}))
        assert _recv(b) == {"type": "signal", "from": a_id, "data": {"sdp": "offer"}}


def test_plain_http_get_returns_status_page(running_relay) -> None:
    url = f"http://127.0.0.1:{running_relay.bound_port}/"
    with urllib.request.urlopen(url, timeout=5) as resp:
        assert resp.status == 200
        body = resp.read().decode("utf-8")
    assert body.startswith("sigrelay ")
