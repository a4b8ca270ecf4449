from __future__ import annotations

import json

from .errors import ProtocolError


def _reject_constant(name: str):
    raise ProtocolError(f"non-JSON constant {name}")


def encode(obj) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def decode(b: str | bytes):
    # NaN and Infinity are not JSON; browsers' JSON.parse rejects them.
    return json.loads(b, parse_constant=_reject_constant)
