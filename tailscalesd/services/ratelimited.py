from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional

from tailscalesd.logger import get_logger
from tailscalesd.metrics import DiscoveryMetrics, NullMetrics
from tailscalesd.schemas.devices import Device
from tailscalesd.services.discovery import Discoverer, StaleResultsError

_logger = get_logger("services.ratelimited")


@dataclass(frozen=True)
class _Snapshot:
    earliest: float
    devices: tuple[Device, ...] = ()
    primed: bool = False


class RateLimitedDiscoverer:
    """Calls the wrapped discoverer at most once per ``frequency_seconds``.

    Between refreshes the last successful result is served from memory. When
    a refresh fails after at least one success, the previous result is raised
    inside a :class:`StaleResultsError` and the next call retries upstream
    right away. Before the first success, upstream errors propagate unchanged.

    The snapshot is an immutable object swapped under a lock, so readers
    never wait and no lock is held while upstream is awaited. Concurrent
    callers that all find the snapshot expired each call upstream.
    """

    def __init__(
        self,
        wrap: Discoverer,
        frequency_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[DiscoveryMetrics] = None,
        name: str = "",
    ) -> None:
        self.wrap = wrap
        self.frequency_seconds = frequency_seconds
        self.name = name or type(wrap).__name__
        self._clock = clock
        self._metrics: DiscoveryMetrics = metrics or NullMetrics()
        self._lock = Lock()
        self._log = _logger.bind(source=self.name)
        self._snapshot = _Snapshot(earliest=float("-inf"))

    @property
    def earliest(self) -> float:
        return self._snapshot.earliest

    async def devices(self) -> list[Device]:
        self._metrics.record_rate_limited_request()
        snapshot = self._snapshot
        if self._clock() > snapshot.earliest:
            return await self._refresh()
        return list(snapshot.devices)

    async def _refresh(self) -> list[Device]:
        self._metrics.record_rate_limited_refresh()
        try:
            devices = await self.wrap.devices()
        except Exception as exc:
            previous = self._snapshot
            if not previous.primed:
                raise
            self._metrics.record_rate_limited_stale()
            self._log.warning(
                "discovery.stale",
                "Refresh failed, serving cached devices",
                cached=len(previous.devices),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise StaleResultsError(previous.devices, exc) from exc

        fresh = tuple(devices)
        with self._lock:
            self._snapshot = _Snapshot(
                earliest=self._clock() + self.frequency_seconds,
                devices=fresh,
                primed=True,
            )
        self._log.debug(
            "discovery.refresh",
            "Refreshed device cache",
            devices=len(fresh),
            frequency_seconds=self.frequency_seconds,
        )
        return list(fresh)
