from __future__ import annotations

from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from tailscalesd.config import LOCAL_API_SOCKET
from tailscalesd.logger import get_logger
from tailscalesd.metrics import DiscoveryMetrics, NullMetrics
from tailscalesd.schemas.devices import Device
from tailscalesd.services.api_client import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    default_timeout,
    fetch_json,
)
from tailscalesd.services.discovery import PayloadError

_logger = get_logger("services.local_api")

API_NAME = "local"
LOCAL_API_HOST = "localhost"
LOCAL_API_BASE_URL = "http://local-tailscaled.sock"
STATUS_PATH = "/localapi/v0/status"


class PeerStatus(BaseModel):
    """The subset of a tailscaled peer status record used for discovery."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(default="", alias="ID")
    host_name: str = Field(default="", alias="HostName")
    os: str = Field(default="", alias="OS")
    tailscale_ips: Optional[list[str]] = Field(default=None, alias="TailscaleIPs")
    tags: Optional[list[str]] = Field(default=None, alias="Tags")
    online: Optional[bool] = Field(default=None, alias="Online")


class LocalStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    peer: Optional[dict[str, PeerStatus]] = Field(default=None, alias="Peer")


def peer_to_device(peer: PeerStatus) -> Device:
    """Translate a local API peer into a Device.

    The local API only lists peers this node can see, so every peer is
    reported as authorized. Name, client version and tailnet are not reported.
    """
    return Device(
        addresses=tuple(peer.tailscale_ips or ()),
        api=LOCAL_API_HOST,
        authorized=True,
        hostname=peer.host_name,
        id=peer.id,
        online=True if peer.online is None else peer.online,
        os=peer.os,
        tags=frozenset(peer.tags or ()),
    )


class LocalAPIDiscoverer:
    """Lists the peers of the local node via tailscaled's unix socket."""

    def __init__(
        self,
        socket_path: str = LOCAL_API_SOCKET,
        *,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[DiscoveryMetrics] = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.socket_path = socket_path
        self.timeout_seconds = timeout_seconds
        self._owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(
                transport=httpx.AsyncHTTPTransport(uds=socket_path),
                base_url=LOCAL_API_BASE_URL,
                timeout=default_timeout(),
            )
        self._client = client
        self._metrics: DiscoveryMetrics = metrics or NullMetrics()

    async def status(self) -> LocalStatus:
        payload = await fetch_json(
            self._client,
            LOCAL_API_BASE_URL + STATUS_PATH,
            api=API_NAME,
            host=LOCAL_API_HOST,
            metrics=self._metrics,
            timeout_seconds=self.timeout_seconds,
        )
        try:
            return LocalStatus.model_validate(payload)
        except ValidationError as exc:
            self._metrics.record_api_payload_error(api=API_NAME, host=LOCAL_API_HOST)
            raise PayloadError(API_NAME, LOCAL_API_HOST, str(exc)) from exc

    async def devices(self) -> list[Device]:
        async with _logger.operation(
            "local_api.devices",
            "Listing local peers",
            socket=self.socket_path,
        ) as operation:
            status = await self.status()
            peers = status.peer or {}
            devices = [peer_to_device(peers[key]) for key in sorted(peers)]
            operation.step("parsed", "Decoded peer status", devices=len(devices))
        return devices

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
