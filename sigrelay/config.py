from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, replace

from .constants import DEFAULT_ICE_SERVERS


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 10000
    ssl_key_file: str | None = None
    ssl_cert_file: str | None = None
    ice_servers: tuple[dict, ...] = field(default=DEFAULT_ICE_SERVERS)
    max_rooms: int = 1000
    max_peers_per_room: int = 4
    room_timeout_s: float = 24 * 3600.0
    room_reap_interval_s: float = 60.0
    ping_interval_s: float = 30.0
    alias_max_chars: int = 32
    max_peer_id_len: int = 64
    max_room_name_len: int = 64
    max_message_bytes: int = 64 * 1024
    status_page: bool = True
    log_level: str = "INFO"
    log_websockets_level: str = "WARNING"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def _coerce_ice_servers(value) -> tuple[dict, ...]:
    if not isinstance(value, (list, tuple)):
        raise ValueError("ice_servers must be a list of tables")
    out: list[dict] = []
    for item in value:
        if isinstance(item, str):
            out.append({"urls": item})
        elif isinstance(item, dict) and item.get("urls"):
            out.append({str(k): v for k, v in item.items()})
        else:
            raise ValueError(f"invalid ice_servers entry: {item!r}")
    return tuple(out)


_INT_KEYS = (
    "port",
    "max_rooms",
    "max_peers_per_room",
    "alias_max_chars",
    "max_peer_id_len",
    "max_room_name_len",
    "max_message_bytes",
)
_FLOAT_KEYS = ("room_timeout_s", "room_reap_interval_s", "ping_interval_s")
_BOOL_KEYS = ("status_page", "log_console")


def _coerce_types(updates: dict) -> None:
    for key in _INT_KEYS:
        if key in updates:
            v = updates[key]
            if isinstance(v, bool) or not isinstance(v, int):
                raise ValueError(f"{key} must be an integer, got {v!r}")
    for key in _FLOAT_KEYS:
        if key in updates:
            v = updates[key]
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                raise ValueError(f"{key} must be a number, got {v!r}")
            updates[key] = float(v)
    for key in _BOOL_KEYS:
        if key in updates and not isinstance(updates[key], bool):
            raise ValueError(f"{key} must be true or false, got {updates[key]!r}")


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        if "level" in log_table:
            mapped["log_level"] = log_table.get("level")
        if "websockets_level" in log_table:
            mapped["log_websockets_level"] = log_table.get("websockets_level")
        if "console" in log_table:
            mapped["log_console"] = log_table.get("console")
        if "file" in log_table:
            mapped["log_file"] = log_table.get("file")
        if "format" in log_table:
            mapped["log_format"] = log_table.get("format")
        if "datefmt" in log_table:
            mapped["log_datefmt"] = log_table.get("datefmt")
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config was read from; do not let the file override it.
    allowed.discard("config_path")

    updates = {k: v for k, v in data.items() if k in allowed}

    _coerce_types(updates)

    if "ice_servers" in updates:
        updates["ice_servers"] = _coerce_ice_servers(updates["ice_servers"])

    for opt_key in ("ssl_key_file", "ssl_cert_file", "log_file", "log_datefmt"):
        if opt_key in updates and updates[opt_key] == "":
            updates[opt_key] = None

    return replace(base, **updates) if updates else base


def apply_env(base: RelayRuntimeConfig, environ=None) -> RelayRuntimeConfig:
    """Apply HOST and PORT from the environment, as PaaS hosts set them."""
    env = os.environ if environ is None else environ
    updates: dict[str, object] = {}

    host = env.get("HOST")
    if host:
        updates["host"] = host

    port = env.get("PORT")
    if port:
        try:
            updates["port"] = int(port)
        except ValueError as e:
            raise ValueError(f"invalid PORT {port!r}") from e

    return replace(base, **updates) if updates else base
