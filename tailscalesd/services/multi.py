from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, Optional

from tailscalesd.logger import get_logger
from tailscalesd.metrics import DiscoveryMetrics, NullMetrics
from tailscalesd.schemas.devices import Device
from tailscalesd.services.discovery import (
    Discoverer,
    MultiDiscoveryError,
    PartialResultsError,
)

_logger = get_logger("services.multi")


@dataclass
class _DiscoveryResult:
    devices: list[Device] = field(default_factory=list)
    error: Optional[Exception] = None


class MultiDiscoverer:
    """Presents several discoverers as one.

    All discoverers are queried concurrently and their devices concatenated
    in registration order. Failures do not discard other sources: every
    device any source produced is returned inside a
    :class:`MultiDiscoveryError` that lists each failure.
    """

    def __init__(
        self,
        discoverers: Iterable[Discoverer] = (),
        *,
        metrics: Optional[DiscoveryMetrics] = None,
    ) -> None:
        self.discoverers: list[Discoverer] = list(discoverers)
        self._metrics: DiscoveryMetrics = metrics or NullMetrics()

    def __len__(self) -> int:
        return len(self.discoverers)

    def append(self, discoverer: Discoverer) -> None:
        self.discoverers.append(discoverer)

    async def devices(self) -> list[Device]:
        self._metrics.record_multi_request()
        results = [_DiscoveryResult() for _ in self.discoverers]
        await asyncio.gather(
            *(
                self._collect(discoverer, result)
                for discoverer, result in zip(self.discoverers, results)
            )
        )

        merged: list[Device] = []
        errors: list[Exception] = []
        for index, result in enumerate(results):
            if result.error is not None:
                self._metrics.record_multi_error()
                errors.append(result.error)
                _logger.debug(
                    "discovery.source_failed",
                    "Discoverer failed",
                    index=index,
                    error_type=type(result.error).__name__,
                    error=str(result.error),
                )
            merged.extend(result.devices)

        if errors:
            raise MultiDiscoveryError(merged, errors)
        return merged

    @staticmethod
    async def _collect(discoverer: Discoverer, result: _DiscoveryResult) -> None:
        try:
            result.devices = list(await discoverer.devices())
        except PartialResultsError as exc:
            result.devices = list(exc.devices)
            result.error = exc
        except Exception as exc:  # noqa: BLE001
            result.error = exc
