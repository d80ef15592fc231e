"""Config file discovery.

Walk-up finder locates ``<slug>.toml``, similar to how git finds .git/.
Supports the ``<SLUG>_CONFIG`` env var and the ``--config`` CLI flag.
"""

from __future__ import annotations

import os
from pathlib import Path


def env_prefix(slug: str) -> str:
    """Environment variable prefix for an application slug (``my-app`` -> ``MY_APP_``)."""
    return slug.upper().replace("-", "_") + "_"


def config_filename(slug: str) -> str:
    return f"{slug}.toml"


def find_config(slug: str, start: Path | None = None) -> Path | None:
    """Walk up from *start* (default: cwd) looking for ``<slug>.toml``.

    Returns the path to the config file, or None if not found.
    Checks the ``<SLUG>_CONFIG`` env var first.
    """
    env_path = os.environ.get(f"{env_prefix(slug)}CONFIG")
    if env_path:
        p = Path(env_path)
        if p.is_file():
            return p
        return None

    filename = config_filename(slug)
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / filename
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent
    return None
