from __future__ import annotations

import re

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(raw: str) -> float:
    """Parse a duration such as ``5m``, ``1h30m``, ``250ms`` or ``42`` into seconds.

    A bare number is taken as seconds. Raises ``ValueError`` for anything else.
    """
    value = str(raw).strip()
    if not value:
        raise ValueError("duration must not be empty")
    try:
        return float(value)
    except ValueError:
        pass

    sign = 1.0
    if value[0] in "+-":
        sign = -1.0 if value[0] == "-" else 1.0
        value = value[1:]
    if not value:
        raise ValueError(f"invalid duration: {raw!r}")

    total = 0.0
    position = 0
    while position < len(value):
        match = _DURATION_PART_RE.match(value, position)
        if match is None:
            raise ValueError(f"invalid duration: {raw!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    return sign * total


def split_host_port(raw: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""
    value = raw.strip()
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"address must be host:port, got {raw!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    port_number = int(port)
    if port_number > 65535:
        raise ValueError(f"port out of range in {raw!r}")
    return host or "0.0.0.0", port_number
