from __future__ import annotations

import os
from functools import lru_cache
from importlib import metadata

_VERSION_ENV = "TAILSCALESD_VERSION"
DEVELOPMENT_VERSION = "development"


@lru_cache
def get_version() -> str:
    """Version stamped at build time, else the installed distribution's version."""
    override = os.getenv(_VERSION_ENV, "").strip()
    if override:
        return override
    try:
        return metadata.version("tailscalesd")
    except metadata.PackageNotFoundError:
        return DEVELOPMENT_VERSION
