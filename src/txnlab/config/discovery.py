"""Locate the ``txnlab.toml`` in effect.

Resolution order: the ``--config`` flag, then ``TXNLAB_CONFIG``, then a
walk up from the working directory (the way git finds ``.git/``). No file
at all is fine: the lab runs on code defaults.
"""

from __future__ import annotations

import os
from pathlib import Path

CONFIG_FILENAME = "txnlab.toml"
CONFIG_ENV_VAR = "TXNLAB_CONFIG"


def find_config(start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) looking for txnlab.toml.

    ``TXNLAB_CONFIG`` wins over the walk; an env path that doesn't exist
    means "no config" rather than falling back to the walk.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        p = Path(env_path)
        return p if p.is_file() else None

    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
    return None


def resolve_config(explicit: str | Path | None, start: Path | None = None) -> Path | None:
    """The config file to load, or None to run on defaults.

    An *explicit* path was asked for by name, so it must exist.

    Raises:
        FileNotFoundError: *explicit* is given but is not a file.
    """
    if explicit is None:
        return find_config(start)
    path = Path(explicit)
    if not path.is_file():
        msg = f"config file not found: {path}"
        raise FileNotFoundError(msg)
    return path
