import time


def test_reap_removes_only_expired_rooms(make_relay, logged_in, consistent) -> None:
    relay = make_relay(room_timeout_s=100.0)
    a, b = logged_in("a", on=relay), logged_in("b", on=relay)
    a.send(type="join", room="old")
    b.send(type="join", room="old")
    b.send(type="join", room="new")
    a.take()
    b.take()

    relay.room_manager.get("old").created_at = time.monotonic() - 500.0

    assert relay.reap_sweep() == ["old"]
    assert relay.room_manager.get("old") is None
    assert relay.room_manager.get("new") is not None
    assert a.peer.rooms == set()
    assert b.peer.rooms == {"new"}
    # Members are not notified.
    assert a.take() == []
    assert b.take() == []
    assert relay.stats_manager.get("rooms_reaped") == 1
    consistent(relay)


def test_reap_is_idempotent(make_relay, logged_in) -> None:
    relay = make_relay(room_timeout_s=100.0)
    a = logged_in("a", on=relay)
    a.send(type="join", room="r1")
    later = time.monotonic() + 1000.0

    assert relay.reap_sweep(now=later) == ["r1"]
    assert relay.reap_sweep(now=later) == []
    assert relay.stats_manager.get("rooms_reaped") == 1


def test_zero_timeout_disables_reaping(make_relay, logged_in) -> None:
    relay = make_relay(room_timeout_s=0)
    a = logged_in("a", on=relay)
    a.send(type="join", room="r1")

    assert relay.reap_sweep(now=time.monotonic() + 10**9) == []
    assert relay.room_manager.get("r1") is not None


def test_reaped_room_can_be_recreated(make_relay, logged_in) -> None:
    relay = make_relay(room_timeout_s=100.0)
    a, b = logged_in("a", on=relay), logged_in("b", on=relay)
    a.send(type="join", room="r1")
    relay.reap_sweep(now=time.monotonic() + 1000.0)

    b.send(type="join", room="r1")

    assert b.take() == [{"type": "join", "room": "r1", "id": b.id, "host": True}]
    assert relay.room_manager.get("r1").host == b.id
