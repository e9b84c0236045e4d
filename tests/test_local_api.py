from __future__ import annotations

import httpx
import pytest

from tailscalesd.schemas.devices import Device
from tailscalesd.services.discovery import FailedRequestError, PayloadError
from tailscalesd.services.local_api import (
    LOCAL_API_BASE_URL,
    STATUS_PATH,
    LocalAPIDiscoverer,
    PeerStatus,
    peer_to_device,
)
from tailscalesd.services.translate import filter_empty_labels, translate

STATUS_PAYLOAD = {
    "Version": "1.60.0",
    "TailscaleIPs": ["100.64.0.1"],
    "Self": {"ID": "self", "HostName": "me", "TailscaleIPs": ["100.64.0.1"]},
    "Peer": {
        "nodekey:bbb": {
            "ID": "n2",
            "HostName": "second",
            "DNSName": "second.example.ts.net.",
            "OS": "windows",
            "TailscaleIPs": ["100.64.0.3"],
            "Online": False,
        },
        "nodekey:aaa": {
            "ID": "n1",
            "HostName": "first",
            "DNSName": "first.example.ts.net.",
            "OS": "linux",
            "TailscaleIPs": ["100.64.0.2", "fd7a::2"],
            "Tags": ["tag:prod"],
        },
    },
}


def _discoverer(handler) -> LocalAPIDiscoverer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LocalAPIDiscoverer("/tmp/tailscaled.sock", client=client)


def test_peer_to_device() -> None:
    peer = PeerStatus.model_validate(
        {
            "ID": "n1",
            "HostName": "first",
            "DNSName": "first.example.ts.net.",
            "OS": "linux",
            "TailscaleIPs": ["100.64.0.2"],
            "Tags": ["tag:prod"],
        }
    )
    assert peer_to_device(peer) == Device(
        addresses=("100.64.0.2",),
        api="localhost",
        authorized=True,
        hostname="first",
        id="n1",
        online=True,
        os="linux",
        tags=frozenset({"tag:prod"}),
    )


def test_peer_to_device_keeps_reported_offline_state() -> None:
    peer = PeerStatus.model_validate({"ID": "n2", "Online": False})
    device = peer_to_device(peer)
    assert device.online is False
    assert device.addresses == ()
    assert device.tags == frozenset()


async def test_lists_peers_sorted_by_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=STATUS_PAYLOAD)

    devices = await _discoverer(handler).devices()

    assert str(seen[0].url) == LOCAL_API_BASE_URL + STATUS_PATH
    assert [device.id for device in devices] == ["n1", "n2"]
    assert devices[0].addresses == ("100.64.0.2", "fd7a::2")
    assert devices[1].online is False
    assert all(device.api == "localhost" and device.authorized for device in devices)


async def test_self_is_not_listed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=STATUS_PAYLOAD)

    devices = await _discoverer(handler).devices()
    assert "self" not in {device.id for device in devices}


async def test_missing_peer_map_means_no_devices() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"TailscaleIPs": ["100.64.0.1"]})

    assert await _discoverer(handler).devices() == []


async def test_bad_payload_is_payload_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Peer": ["not", "a", "map"]})

    with pytest.raises(PayloadError) as caught:
        await _discoverer(handler).devices()
    assert caught.value.api == "local"


async def test_error_status_is_failed_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="forbidden")

    with pytest.raises(FailedRequestError) as caught:
        await _discoverer(handler).devices()
    assert "403" in str(caught.value)
    assert caught.value.host == "localhost"


async def test_default_client_is_owned_and_closed() -> None:
    discoverer = LocalAPIDiscoverer("/tmp/does-not-exist.sock")
    await discoverer.aclose()
    assert discoverer._client.is_closed


async def test_local_targets_omit_labels_the_local_api_does_not_report() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=STATUS_PAYLOAD)

    devices = await _discoverer(handler).devices()
    labels = translate(devices, [filter_empty_labels])[0].labels

    assert labels["__meta_tailscale_device_hostname"] == "first"
    assert "__meta_tailscale_device_name" not in labels
    assert "__meta_tailscale_device_client_version" not in labels
    assert "__meta_tailscale_tailnet" not in labels
