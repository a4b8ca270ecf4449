"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


class StatsManager:
    """
    Manages relay statistics collection and reporting.

    Tracks lifetime counters for:
    - Messages and bytes in/out
    - Malformed and unknown messages
    - Errors sent
    - Logins, joins, leaves, kicks
    - Signals forwarded
    - Liveness probes and timeouts
    - Rooms reaped
    """

    def __init__(self, relay: RelayService) -> None:
        self.relay = relay

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "bytes_in": 0,
            "bytes_out": 0,
            "msgs_in": 0,
            "msgs_out": 0,
            "msgs_bad": 0,
            "msgs_unknown": 0,
            "errors_sent": 0,
            "connections_opened": 0,
            "connections_closed": 0,
            "logins": 0,
            "joins": 0,
            "leaves": 0,
            "kicks": 0,
            "signals_forwarded": 0,
            "probes_sent": 0,
            "liveness_timeouts": 0,
            "rooms_reaped": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self.relay._state_lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self.relay._state_lock:
            return int(self._counters.get(key, 0))

    def uptime_s(self) -> float:
        if self.started_monotonic is None:
            return 0.0
        return time.monotonic() - self.started_monotonic

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        with self.relay._state_lock:
            peer_stats = self.relay.peer_registry.get_stats()
            room_stats = self.relay.room_manager.get_stats()
            c = dict(self._counters)

        cfg = self.relay.config
        lines: list[str] = []
        lines.append(f"sigrelay {__version__} stats")
        if self.started_wall_time is not None:
            started = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.started_wall_time))
            lines.append(f"started={started}")
        lines.append(f"uptime_s={self.uptime_s():.1f}")
        lines.append(
            f"connections={peer_stats['connections']} "
            f"peers={peer_stats['peers']} "
            f"anonymous={peer_stats['anonymous']}"
        )
        lines.append(
            f"rooms={room_stats['rooms_total']} "
            f"memberships={room_stats['memberships']} "
            f"locked={room_stats['locked']}"
        )

        top_rooms = room_stats["top_rooms"]
        if top_rooms:
            lines.append("top_rooms=" + ", ".join(f"{r}:{n}" for r, n in top_rooms))

        lines.append(
            f"limits: max_rooms={cfg.max_rooms} "
            f"max_peers_per_room={cfg.max_peers_per_room} "
            f"room_timeout_s={cfg.room_timeout_s} "
            f"ping_interval_s={cfg.ping_interval_s}"
        )
        lines.append(
            "io: msgs_in={} msgs_out={} msgs_bad={} msgs_unknown={} bytes_in={} bytes_out={}".format(
                c.get("msgs_in", 0),
                c.get("msgs_out", 0),
                c.get("msgs_bad", 0),
                c.get("msgs_unknown", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            )
        )
        lines.append(
            "events: logins={} joins={} leaves={} kicks={} signals_fwd={} errors_sent={}".format(
                c.get("logins", 0),
                c.get("joins", 0),
                c.get("leaves", 0),
                c.get("kicks", 0),
                c.get("signals_forwarded", 0),
                c.get("errors_sent", 0),
            )
        )
        lines.append(
            "maintenance: opened={} closed={} probes={} timeouts={} rooms_reaped={}".format(
                c.get("connections_opened", 0),
                c.get("connections_closed", 0),
                c.get("probes_sent", 0),
                c.get("liveness_timeouts", 0),
                c.get("rooms_reaped", 0),
            )
        )

        return "\n".join(lines) + "\n"
