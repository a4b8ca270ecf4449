from __future__ import annotations

import os

from .constants import DEFAULT_ALIAS


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def new_peer_id() -> str:
    return os.urandom(8).hex()


def _clean_text(value, *, max_chars: int) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars > 0 and len(s) > int(max_chars):
        return None

    # Embedded newlines or NUL break client UIs and log lines.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    try:
        s.encode("utf-8", "strict")
    except UnicodeError:
        return None

    return s


def normalize_alias(value, *, max_chars: int = 32) -> str:
    s = _clean_text(value, max_chars=max_chars)
    return s if s is not None else DEFAULT_ALIAS


def normalize_peer_id(value, *, max_len: int = 64) -> str | None:
    s = _clean_text(value, max_chars=max_len)
    if s is None:
        return None
    if any(ch.isspace() for ch in s):
        return None
    return s
