from __future__ import annotations

import time
from typing import Callable, Generator, Optional, Sequence
from urllib.parse import quote

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from tailscalesd.config import PUBLIC_API_HOST
from tailscalesd.logger import get_logger
from tailscalesd.metrics import DiscoveryMetrics, NullMetrics
from tailscalesd.schemas.devices import Device
from tailscalesd.services.api_client import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    default_timeout,
    fetch_json,
)
from tailscalesd.services.discovery import PayloadError

_logger = get_logger("services.public_api")

API_NAME = "public"
OAUTH_DEVICE_SCOPES = ("devices:core:read",)
_TOKEN_REFRESH_MARGIN_SECONDS = 60.0


class _PublicDevice(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    addresses: Optional[list[str]] = None
    authorized: bool = False
    client_version: Optional[str] = Field(default=None, validation_alias="clientVersion")
    hostname: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    online: Optional[bool] = Field(
        default=None,
        validation_alias=AliasChoices("connectedToControl", "online"),
    )
    os: Optional[str] = None
    tags: Optional[list[str]] = None


class _DeviceListResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    devices: Optional[list[_PublicDevice]] = None


class OAuthClientCredentials(httpx.Auth):
    """httpx auth flow for Tailscale OAuth clients.

    Exchanges the client id and secret for an access token on first use and
    again shortly before the token expires, then sends it as a bearer token.
    """

    requires_response_body = True

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        token_url: str,
        scopes: Sequence[str] = OAUTH_DEVICE_SCOPES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_url = token_url
        self.scopes = tuple(scopes)
        self._clock = clock
        self._access_token = ""
        self._expires_at = 0.0

    def _token_valid(self) -> bool:
        return bool(self._access_token) and self._clock() < self._expires_at

    def _token_request(self) -> httpx.Request:
        return httpx.Request(
            "POST",
            self.token_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "client_credentials",
                "scope": " ".join(self.scopes),
            },
        )

    def _store_token(self, response: httpx.Response) -> None:
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise ValueError("OAuth token response did not include an access_token")
        expires_in = float(payload.get("expires_in") or 3600)
        self._access_token = str(payload["access_token"])
        self._expires_at = self._clock() + max(0.0, expires_in - _TOKEN_REFRESH_MARGIN_SECONDS)
        _logger.debug("oauth.token", "Obtained OAuth access token", expires_in=expires_in)

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        if not self._token_valid():
            token_response = yield self._token_request()
            self._store_token(token_response)
        request.headers["Authorization"] = f"Bearer {self._access_token}"
        yield request


class PublicAPIDiscoverer:
    """Lists the devices of a tailnet using the Tailscale v2 API."""

    def __init__(
        self,
        tailnet: str,
        *,
        auth: httpx.Auth,
        api_host: str = PUBLIC_API_HOST,
        client: Optional[httpx.AsyncClient] = None,
        metrics: Optional[DiscoveryMetrics] = None,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.tailnet = tailnet
        self.api_host = api_host
        self.timeout_seconds = timeout_seconds
        self._auth = auth
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=default_timeout())
        self._metrics: DiscoveryMetrics = metrics or NullMetrics()

    @property
    def devices_url(self) -> str:
        return f"https://{self.api_host}/api/v2/tailnet/{quote(self.tailnet, safe='@')}/devices"

    async def devices(self) -> list[Device]:
        async with _logger.operation(
            "public_api.devices",
            "Listing tailnet devices",
            host=self.api_host,
            tailnet=self.tailnet,
        ) as operation:
            payload = await fetch_json(
                self._client,
                self.devices_url,
                api=API_NAME,
                host=self.api_host,
                metrics=self._metrics,
                auth=self._auth,
                timeout_seconds=self.timeout_seconds,
            )
            try:
                parsed = _DeviceListResponse.model_validate(payload)
            except ValidationError as exc:
                self._metrics.record_api_payload_error(api=API_NAME, host=self.api_host)
                raise PayloadError(API_NAME, self.api_host, str(exc)) from exc

            devices = [self._to_device(item) for item in parsed.devices or []]
            operation.step("parsed", "Decoded device list", devices=len(devices))
        self._metrics.record_devices_found(tailnet=self.tailnet, count=len(devices))
        return devices

    def _to_device(self, item: _PublicDevice) -> Device:
        return Device(
            addresses=tuple(item.addresses or ()),
            api=self.api_host,
            authorized=item.authorized,
            client_version=item.client_version or "",
            hostname=item.hostname or "",
            id=item.id or "",
            name=item.name or "",
            online=bool(item.online),
            os=item.os or "",
            tailnet=self.tailnet,
            tags=frozenset(item.tags or ()),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def token_discoverer(
    tailnet: str,
    token: str,
    *,
    api_host: str = PUBLIC_API_HOST,
    client: Optional[httpx.AsyncClient] = None,
    metrics: Optional[DiscoveryMetrics] = None,
) -> PublicAPIDiscoverer:
    """Public API discoverer authenticated with an API access token."""
    return PublicAPIDiscoverer(
        tailnet,
        auth=httpx.BasicAuth(token, ""),
        api_host=api_host,
        client=client,
        metrics=metrics,
    )


def oauth_discoverer(
    tailnet: str,
    client_id: str,
    client_secret: str,
    *,
    api_host: str = PUBLIC_API_HOST,
    client: Optional[httpx.AsyncClient] = None,
    metrics: Optional[DiscoveryMetrics] = None,
) -> PublicAPIDiscoverer:
    """Public API discoverer authenticated with OAuth client credentials."""
    auth = OAuthClientCredentials(
        client_id,
        client_secret,
        token_url=f"https://{api_host}/api/v2/oauth/token",
    )
    return PublicAPIDiscoverer(
        tailnet,
        auth=auth,
        api_host=api_host,
        client=client,
        metrics=metrics,
    )
