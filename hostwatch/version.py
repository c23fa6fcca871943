from __future__ import annotations

from importlib import metadata


DIST_NAME = "hostwatch-agent"
UNKNOWN_VERSION = "0.0.0"


def get_version() -> str:
    """Installed distribution version, or 0.0.0 for an uninstalled checkout."""

    try:
        return metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        return UNKNOWN_VERSION


__version__ = get_version()
