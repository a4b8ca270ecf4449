from __future__ import annotations

from .constants import (
    K_DATA,
    K_KICK,
    K_LOCKED,
    K_ROOM,
    K_TO,
    K_TYPE,
    T_JOIN,
    T_KICK,
    T_LEAVE,
    T_LOCK,
    T_SIGNAL,
)
from .errors import ProtocolError


def make_envelope(msg_type: str, **fields) -> dict:
    env: dict[str, object] = {K_TYPE: str(msg_type)}
    for k, v in fields.items():
        env[k] = v
    return env


def _require_str(env: dict, key: str, *, max_len: int | None = None) -> None:
    if key not in env:
        raise ProtocolError(f"missing field {key!r}")
    v = env[key]
    if not isinstance(v, str):
        raise ProtocolError(f"field {key!r} must be a string")
    if v == "":
        raise ProtocolError(f"field {key!r} must not be empty")
    if max_len is not None and max_len > 0 and len(v) > max_len:
        raise ProtocolError(f"field {key!r} too long")


def validate_envelope(env, *, max_room_name_len: int = 0) -> None:
    """Check the envelope shape for the message types the relay understands.

    Unknown types pass; the router drops them without a reply. Optional
    login fields are normalized by the peer registry instead of rejected here.
    """
    if not isinstance(env, dict):
        raise ProtocolError("envelope must be a JSON object")

    t = env.get(K_TYPE)
    if not isinstance(t, str):
        raise ProtocolError("message type must be a string")

    if t in (T_JOIN, T_LEAVE):
        _require_str(env, K_ROOM, max_len=max_room_name_len)
    elif t == T_SIGNAL:
        _require_str(env, K_TO)
        # data is opaque and may be any JSON value, including null.
        env.setdefault(K_DATA, None)
    elif t == T_KICK:
        _require_str(env, K_ROOM, max_len=max_room_name_len)
        _require_str(env, K_KICK)
    elif t == T_LOCK:
        _require_str(env, K_ROOM, max_len=max_room_name_len)
        if not isinstance(env.get(K_LOCKED), bool):
            raise ProtocolError("field 'locked' must be a boolean")
