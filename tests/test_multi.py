from __future__ import annotations

import asyncio

import pytest
from discovery_fakes import FakeDiscoverer, GatedDiscoverer, sample_device
from prometheus_client import CollectorRegistry

from tailscalesd.metrics import PrometheusMetrics
from tailscalesd.services.discovery import (
    FailedRequestError,
    MultiDiscoveryError,
    StaleResultsError,
    is_stale,
)
from tailscalesd.services.multi import MultiDiscoverer


async def test_no_discoverers_yields_no_devices() -> None:
    assert await MultiDiscoverer().devices() == []


async def test_results_follow_registration_order_not_completion_order() -> None:
    first = FakeDiscoverer([sample_device(id="a1"), sample_device(id="a2")], delay=0.05)
    second = FakeDiscoverer([sample_device(id="b1")], delay=0.0)
    third = FakeDiscoverer([sample_device(id="c1")], delay=0.02)
    multi = MultiDiscoverer([first, second, third])

    got = await multi.devices()

    assert [device.id for device in got] == ["a1", "a2", "b1", "c1"]


async def test_discoverers_run_concurrently() -> None:
    gated = GatedDiscoverer([sample_device(id="gated")])
    plain = FakeDiscoverer([sample_device(id="plain")])
    multi = MultiDiscoverer([gated, plain])

    task = asyncio.create_task(multi.devices())
    await gated.started.wait()
    assert plain.called == 1

    gated.release.set()
    assert [device.id for device in await task] == ["gated", "plain"]


async def test_append_registers_in_order() -> None:
    multi = MultiDiscoverer()
    multi.append(FakeDiscoverer([sample_device(id="x")]))
    multi.append(FakeDiscoverer([sample_device(id="y")]))
    assert len(multi) == 2
    assert [device.id for device in await multi.devices()] == ["x", "y"]


async def test_failure_keeps_devices_from_other_sources() -> None:
    error = FailedRequestError("public", "api.example.com", "401 Unauthorized")
    multi = MultiDiscoverer(
        [
            FakeDiscoverer([sample_device(id="ok")]),
            FakeDiscoverer(error=error),
            FakeDiscoverer([sample_device(id="also-ok")]),
        ]
    )

    with pytest.raises(MultiDiscoveryError) as caught:
        await multi.devices()

    assert [device.id for device in caught.value.devices] == ["ok", "also-ok"]
    assert caught.value.errors == [error]
    assert "401 Unauthorized" in str(caught.value)
    assert not is_stale(caught.value)


async def test_only_stale_failures_are_stale() -> None:
    stale = StaleResultsError([sample_device(id="cached")], RuntimeError("down"))
    multi = MultiDiscoverer(
        [FakeDiscoverer([sample_device(id="live")]), FakeDiscoverer(error=stale)]
    )

    with pytest.raises(MultiDiscoveryError) as caught:
        await multi.devices()

    assert [device.id for device in caught.value.devices] == ["live", "cached"]
    assert is_stale(caught.value)


async def test_stale_mixed_with_hard_failure_is_still_stale() -> None:
    stale = StaleResultsError([sample_device(id="cached")], RuntimeError("down"))
    multi = MultiDiscoverer(
        [FakeDiscoverer(error=stale), FakeDiscoverer(error=RuntimeError("boom"))]
    )

    with pytest.raises(MultiDiscoveryError) as caught:
        await multi.devices()

    assert [device.id for device in caught.value.devices] == ["cached"]
    assert len(caught.value.errors) == 2
    assert is_stale(caught.value)


async def test_nested_multi_discoverers_keep_stale_classification() -> None:
    stale = StaleResultsError([sample_device(id="cached")], RuntimeError("down"))
    inner = MultiDiscoverer([FakeDiscoverer(error=stale)])
    outer = MultiDiscoverer([inner, FakeDiscoverer([sample_device(id="live")])])

    with pytest.raises(MultiDiscoveryError) as caught:
        await outer.devices()

    assert [device.id for device in caught.value.devices] == ["cached", "live"]
    assert is_stale(caught.value)


async def test_records_requests_and_errors(
    registry: CollectorRegistry, metrics: PrometheusMetrics
) -> None:
    multi = MultiDiscoverer(
        [FakeDiscoverer(error=RuntimeError("a")), FakeDiscoverer(error=RuntimeError("b"))],
        metrics=metrics,
    )
    with pytest.raises(MultiDiscoveryError):
        await multi.devices()

    assert registry.get_sample_value("tailscalesd_tailscale_multi_requests_total") == 1
    assert registry.get_sample_value("tailscalesd_tailscale_multi_errors_total") == 2


async def test_cancellation_reaches_every_source() -> None:
    first = GatedDiscoverer()
    second = GatedDiscoverer()
    multi = MultiDiscoverer([first, second])

    task = asyncio.create_task(multi.devices())
    await first.started.wait()
    await second.started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert first.cancelled
    assert second.cancelled


def test_is_stale_rejects_other_errors() -> None:
    assert not is_stale(None)
    assert not is_stale(RuntimeError("x"))
    assert not is_stale(MultiDiscoveryError([], []))


async def test_hard_failures_alone_are_not_stale() -> None:
    inner = MultiDiscoverer([FakeDiscoverer(error=RuntimeError("boom"))])
    outer = MultiDiscoverer([inner, FakeDiscoverer(error=RuntimeError("bang"))])

    with pytest.raises(MultiDiscoveryError) as caught:
        await outer.devices()

    assert not is_stale(caught.value)
