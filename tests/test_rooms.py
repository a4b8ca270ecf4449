import random

import pytest


def _types(msgs):
    return [m["type"] for m in msgs]


def test_first_join_creates_room_with_host(relay, logged_in, consistent) -> None:
    a = logged_in("alice")
    a.send(type="join", room="r1")

    room = relay.room_manager.get("r1")
    assert room is not None
    assert room.host == a.id
    assert room.members == {a.id}
    assert a.peer.rooms == {"r1"}
    assert a.take() == [{"type": "join", "room": "r1", "id": a.id, "host": True}]
    consistent(relay)


def test_room_capacity(make_relay, logged_in, consistent) -> None:
    relay = make_relay(max_peers_per_room=2)
    a, b, c = (logged_in(n, on=relay) for n in ("a", "b", "c"))
    a.send(type="join", room="r1")
    b.send(type="join", room="r1")
    a.take()
    b.take()

    c.send(type="join", room="r1")

    assert c.take() == [{"type": "error", "message": "Room full"}]
    assert a.take() == []
    assert b.take() == []
    assert relay.room_manager.get("r1").members == {a.id, b.id}
    assert c.peer.rooms == set()
    consistent(relay)


def test_server_room_limit_only_applies_to_new_rooms(make_relay, logged_in, consistent) -> None:
    relay = make_relay(max_rooms=1)
    a, b = logged_in("a", on=relay), logged_in("b", on=relay)
    a.send(type="join", room="r1")
    a.take()

    b.send(type="join", room="r2")
    assert b.take() == [{"type": "error", "message": "Server full"}]
    assert relay.room_manager.get("r2") is None

    b.send(type="join", room="r1")
    assert _types(b.take()) == ["join", "peer-list"]
    consistent(relay)


def test_locked_room_rejects_non_host(relay, logged_in, consistent) -> None:
    a, b = logged_in("a"), logged_in("b")
    a.send(type="join", room="r1")
    a.send(type="lock", room="r1", locked=True)
    assert a.take()[-1] == {"type": "lock", "room": "r1", "locked": True}

    b.send(type="join", room="r1")
    assert b.take() == [{"type": "error", "message": "Room locked"}]
    assert relay.room_manager.get("r1").members == {a.id}

    # Host may still rejoin its own locked room.
    a.send(type="join", room="r1")
    assert a.take() == [{"type": "join", "room": "r1", "id": a.id, "host": True}]

    a.send(type="lock", room="r1", locked=False)
    b.send(type="join", room="r1")
    assert _types(b.take()) == ["join", "peer-list"]
    consistent(relay)


def test_lock_is_broadcast_to_every_member(relay, logged_in) -> None:
    a, b = logged_in("a"), logged_in("b")
    a.send(type="join", room="r1")
    b.send(type="join", room="r1")
    a.take()
    b.take()

    a.send(type="lock", room="r1", locked=True)

    expected = [{"type": "lock", "room": "r1", "locked": True}]
    assert a.take() == expected
    assert b.take() == expected
    assert relay.room_manager.get("r1").locked is True


@pytest.mark.parametrize(
    "msg",
    [
        {"type": "lock", "room": "r1", "locked": True},
        {"type": "kick", "room": "r1", "kick": "placeholder"},
    ],
)
def test_non_host_cannot_lock_or_kick(relay, logged_in, consistent, msg) -> None:
    a, b = logged_in("a"), logged_in("b")
    a.send(type="join", room="r1")
    b.send(type="join", room="r1")
    a.take()
    b.take()

    if msg["type"] == "kick":
        msg = {**msg, "kick": a.id}
    b.send(**msg)

    assert b.take() == [{"type": "error", "message": "Not host"}]
    assert a.take() == []
    room = relay.room_manager.get("r1")
    assert room.members == {a.id, b.id}
    assert room.locked is False
    consistent(relay)


def test_host_operations_on_missing_room(relay, logged_in) -> None:
    a = logged_in("a")
    a.send(type="lock", room="nope", locked=True)
    a.send(type="kick", room="nope", kick="x")
    assert a.take() == [
        {"type": "error", "message": "Not host"},
        {"type": "error", "message": "Not host"},
    ]
    assert relay.room_manager.get("nope") is None


def test_kick_self_and_kick_non_member(relay, logged_in, consistent) -> None:
    a, b = logged_in("a"), logged_in("b")
    a.send(type="join", room="r1")
    a.take()

    a.send(type="kick", room="r1", kick=a.id)
    a.send(type="kick", room="r1", kick=b.id)

    assert a.take() == [
        {"type": "error", "message": "Cannot kick yourself"},
        {"type": "error", "message": "Peer not found"},
    ]
    assert b.take() == []
    assert relay.room_manager.get("r1").members == {a.id}
    consistent(relay)


def test_member_leave_keeps_room(relay, logged_in, consistent) -> None:
    a, b = logged_in("a"), logged_in("b")
    a.send(type="join", room="r1")
    b.send(type="join", room="r1")
    a.take()
    b.take()

    b.send(type="leave", room="r1")

    assert b.take() == [{"type": "leave", "room": "r1"}]
    assert a.take() == [{"type": "peer-disconnect", "id": b.id}]
    assert relay.room_manager.get("r1").members == {a.id}
    assert b.peer.rooms == set()
    consistent(relay)


def test_host_leave_destroys_room(relay, logged_in, consistent) -> None:
    a, b = logged_in("a"), logged_in("b")
    a.send(type="join", room="r1")
    b.send(type="join", room="r1")
    a.take()
    b.take()

    a.send(type="leave", room="r1")

    assert a.take() == [{"type": "leave", "room": "r1"}]
    assert b.take() == [{"type": "peer-disconnect", "id": a.id}]
    assert relay.room_manager.get("r1") is None
    assert b.peer.rooms == set()
    consistent(relay)


def test_leave_of_unjoined_room_sends_nothing(relay, logged_in) -> None:
    a, b = logged_in("a"), logged_in("b")
    a.send(type="join", room="r1")
    a.take()

    b.send(type="leave", room="r1")
    b.send(type="leave", room="ghost")

    assert b.take() == []
    assert a.take() == []


def test_rejoin_resends_state_without_broadcast(relay, logged_in, consistent) -> None:
    a, b = logged_in("alice"), logged_in("bob")
    a.send(type="join", room="r1")
    b.send(type="join", room="r1")
    a.take()
    b.take()

    b.send(type="join", room="r1")

    assert b.take() == [
        {"type": "join", "room": "r1", "id": b.id, "host": False},
        {"type": "peer-list", "peers": [{"id": a.id, "alias": "alice"}]},
    ]
    assert a.take() == []
    assert relay.room_manager.get("r1").members == {a.id, b.id}
    consistent(relay)


def test_peer_can_be_in_several_rooms(relay, logged_in, consistent) -> None:
    a = logged_in("a")
    for name in ("r1", "r2", "r3"):
        a.send(type="join", room=name)
    assert a.peer.rooms == {"r1", "r2", "r3"}

    a.send(type="leave", room="r2")
    assert a.peer.rooms == {"r1", "r3"}
    assert relay.room_manager.get("r2") is None
    consistent(relay)


def test_destroy_is_idempotent(relay, logged_in, consistent) -> None:
    a = logged_in("a")
    a.send(type="join", room="r1")

    assert relay.room_manager.destroy("r1") is True
    assert relay.room_manager.destroy("r1") is False
    assert relay.room_manager.destroy("never-existed") is False
    assert a.peer.rooms == set()
    consistent(relay)


def test_room_stats(relay, logged_in) -> None:
    a, b = logged_in("a"), logged_in("b")
    a.send(type="join", room="big")
    b.send(type="join", room="big")
    b.send(type="join", room="small")
    a.send(type="lock", room="big", locked=True)

    stats = relay.room_manager.get_stats()
    assert stats["rooms_total"] == 2
    assert stats["memberships"] == 3
    assert stats["locked"] == 1
    assert stats["top_rooms"] == [("big", 2), ("small", 1)]


def test_invariants_hold_under_random_operations(make_relay, logged_in, consistent) -> None:
    relay = make_relay(max_rooms=3, max_peers_per_room=3)
    rng = random.Random(1234)
    clients = [logged_in(f"p{i}", on=relay) for i in range(6)]
    room_names = ["r1", "r2", "r3", "r4"]

    for _ in range(400):
        c = rng.choice(clients)
        op = rng.choice(["join", "join", "leave", "lock", "kick", "reconnect"])
        room = rng.choice(room_names)

        if op == "join":
            c.send(type="join", room=room)
        elif op == "leave":
            c.send(type="leave", room=room)
        elif op == "lock":
            c.send(type="lock", room=room, locked=rng.choice([True, False]))
        elif op == "kick":
            target = rng.choice(clients)
            c.send(type="kick", room=room, kick=target.id)
        else:
            c.disconnect()
            idx = clients.index(c)
            clients[idx] = logged_in(f"p{idx}", on=relay)

        consistent(relay)
        for other in clients:
            other.take()


def test_peer_list_is_ordered_by_peer_id(relay, make_client) -> None:
    clients = []
    for pid in ("delta", "bravo", "charlie"):
        c = make_client(pid)
        c.login(alias=pid, peer_id=pid)
        c.send(type="join", room="r1")
        clients.append(c)

    late = make_client("alpha")
    late.login(alias="alpha", peer_id="alpha")
    late.take()
    late.send(type="join", room="r1")

    assert late.take()[1] == {
        "type": "peer-list",
        "peers": [
            {"id": "bravo", "alias": "bravo"},
            {"id": "charlie", "alias": "charlie"},
            {"id": "delta", "alias": "delta"},
        ],
    }
