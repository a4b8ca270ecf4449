from __future__ import annotations

import os
from pathlib import Path

CONFIG_FILENAME = "sigrelay.toml"


def default_sigrelay_dir(environ=None) -> Path:
    """Return the state directory: ``$SIGRELAY_HOME`` if set, else ``~/.sigrelay``."""
    env = os.environ if environ is None else environ
    override = (env.get("SIGRELAY_HOME") or "").strip()
    if override:
        return Path(os.path.expanduser(override))
    return Path.home() / ".sigrelay"


def default_config_path(environ=None) -> Path:
    return default_sigrelay_dir(environ) / CONFIG_FILENAME


def ensure_private_dir(path: Path, mode: int = 0o700) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    try:
        os.chmod(path, mode)
    except OSError:
        # Some filesystems (and Windows) ignore or refuse permission bits.
        pass
    return path
