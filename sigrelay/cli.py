from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

import tomlkit

from .config import RelayRuntimeConfig, apply_config_data, apply_env, load_toml
from .constants import DEFAULT_ICE_SERVERS
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import RelayService


def build_default_config() -> tomlkit.TOMLDocument:
    defaults = RelayRuntimeConfig()
    doc = tomlkit.document()
    doc.add(tomlkit.comment("sigrelay configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("This file was created on first run."))
    doc.add(tomlkit.comment("Edit it, then start sigrelay again."))
    doc.add(tomlkit.nl())

    relay = tomlkit.table()

    relay.add(tomlkit.comment("Listen address. HOST and PORT environment variables override these."))
    relay.add("host", defaults.host)
    relay.add("port", defaults.port)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("TLS. Set both paths to serve wss://; leave empty for plain ws://."))
    relay.add("ssl_key_file", "")
    relay.add("ssl_cert_file", "")
    relay.add(tomlkit.nl())

    ice = tomlkit.aot()
    for server in DEFAULT_ICE_SERVERS:
        entry = tomlkit.table()
        for k, v in server.items():
            entry.add(k, v)
        ice.append(entry)

    relay.add(tomlkit.comment("Limits."))
    relay.add("max_rooms", defaults.max_rooms)
    relay.add("max_peers_per_room", defaults.max_peers_per_room)
    relay.add("alias_max_chars", defaults.alias_max_chars)
    relay.add("max_peer_id_len", defaults.max_peer_id_len)
    relay.add("max_room_name_len", defaults.max_room_name_len)
    relay.add("max_message_bytes", defaults.max_message_bytes)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Rooms older than room_timeout_s are removed at the next sweep (0 disables)."))
    relay.add("room_timeout_s", defaults.room_timeout_s)
    relay.add("room_reap_interval_s", defaults.room_reap_interval_s)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Connections that miss a ping for one full interval are closed (0 disables)."))
    relay.add("ping_interval_s", defaults.ping_interval_s)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Answer plain HTTP GET requests with a text status report."))
    relay.add("status_page", defaults.status_page)
    relay.add(tomlkit.nl())

    # Arrays of tables must follow the plain keys of their parent table.
    relay.add(tomlkit.comment("ICE servers handed to clients in the login reply."))
    relay.add("ice_servers", ice)

    doc.add("relay", relay)

    logging_table = tomlkit.table()
    logging_table.add(tomlkit.comment("Log level for sigrelay itself."))
    logging_table.add("level", defaults.log_level)
    logging_table.add(tomlkit.comment("Log level for the websockets library."))
    logging_table.add("websockets_level", defaults.log_websockets_level)
    logging_table.add(tomlkit.comment("Log to stderr (systemd/journald friendly)."))
    logging_table.add("console", defaults.log_console)
    logging_table.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    logging_table.add("file", "")
    logging_table.add(tomlkit.comment("Log format and optional date format."))
    logging_table.add("format", defaults.log_format)
    logging_table.add("datefmt", "")
    doc.add("logging", logging_table)

    return doc


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(tomlkit.dumps(build_default_config()))
    try:
        os.chmod(config_path, 0o600)
    except OSError:
        pass


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="sigrelay", description="Run a WebRTC signalling relay"
    )

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument(
        "--no-config",
        action="store_true",
        help="Do not read or create a config file; use defaults, env and flags only",
    )

    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 10000)")

    p.add_argument("--ssl-key", default=None, help="TLS private key file")
    p.add_argument("--ssl-cert", default=None, help="TLS certificate chain file")

    p.add_argument("--max-rooms", type=int, default=None, help="Max concurrent rooms")
    p.add_argument(
        "--max-peers-per-room", type=int, default=None, help="Max members per room"
    )
    p.add_argument(
        "--room-timeout",
        type=float,
        default=None,
        help="Remove rooms older than this many seconds (0 disables)",
    )
    p.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="Liveness probe interval seconds (0 disables)",
    )
    p.add_argument(
        "--no-status-page",
        action="store_true",
        help="Do not answer plain HTTP requests with the status report",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(
    args: argparse.Namespace, environ=None
) -> RelayRuntimeConfig:
    cfg = RelayRuntimeConfig()

    if not args.no_config:
        config_path = str(args.config)
        cfg = replace(cfg, config_path=config_path)
        cfg = apply_config_data(cfg, load_toml(config_path))

    cfg = apply_env(cfg, environ)

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))

    if args.ssl_key is not None:
        cfg = replace(cfg, ssl_key_file=str(args.ssl_key) or None)
    if args.ssl_cert is not None:
        cfg = replace(cfg, ssl_cert_file=str(args.ssl_cert) or None)

    if args.max_rooms is not None:
        cfg = replace(cfg, max_rooms=int(args.max_rooms))
    if args.max_peers_per_room is not None:
        cfg = replace(cfg, max_peers_per_room=int(args.max_peers_per_room))
    if args.room_timeout is not None:
        cfg = replace(cfg, room_timeout_s=float(args.room_timeout))
    if args.ping_interval is not None:
        cfg = replace(cfg, ping_interval_s=float(args.ping_interval))
    if args.no_status_page:
        cfg = replace(cfg, status_page=False)

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    if not args.no_config and not os.path.exists(args.config):
        _write_default_config(str(args.config))
        print(
            "Created default sigrelay config. Edit it before starting:\n"
            f"- Config: {args.config}\n"
            "\nThen re-run sigrelay.",
            file=sys.stderr,
        )
        raise SystemExit(0)

    cfg = build_config(args)

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = RelayService(cfg)
    svc.start()
    svc.run_forever()


if __name__ == "__main__":
    main()
