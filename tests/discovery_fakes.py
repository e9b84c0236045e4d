from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from tailscalesd.schemas.devices import Device


def sample_device(**overrides: object) -> Device:
    fields: dict[str, object] = {
        "addresses": ("100.2.3.4", "fd7a::1234"),
        "api": "foo.example.com",
        "client_version": "420.69",
        "hostname": "somethingclever",
        "id": "id",
        "name": "somethingclever",
        "os": "beos",
        "tailnet": "example@gmail.com",
        "tags": frozenset({"tag:foo", "tag:bar"}),
    }
    fields.update(overrides)
    return Device(**fields)


class FakeDiscoverer:
    def __init__(
        self,
        devices: Iterable[Device] = (),
        *,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        self.discovered = list(devices)
        self.error = error
        self.delay = delay
        self.called = 0

    async def devices(self) -> list[Device]:
        self.called += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.discovered)


class GatedDiscoverer:
    """Blocks every call until ``release`` is set."""

    def __init__(self, devices: Iterable[Device] = ()) -> None:
        self.discovered = list(devices)
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.called = 0
        self.cancelled = False

    async def devices(self) -> list[Device]:
        self.called += 1
        self.started.set()
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return list(self.discovered)


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
