from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from tailscalesd.schemas.devices import Device


@runtime_checkable
class Discoverer(Protocol):
    """Anything that can list the devices visible to it.

    Implementations make a single attempt per call and never retry; callers
    own retry behaviour. Cancellation and deadlines come from the awaiting
    task.
    """

    async def devices(self) -> list[Device]: ...


class DiscoveryError(RuntimeError):
    pass


class FailedRequestError(DiscoveryError):
    def __init__(self, api: str, host: str, detail: str) -> None:
        super().__init__(f"failed {api} API request to {host}: {detail}")
        self.api = api
        self.host = host
        self.detail = detail


class PayloadError(DiscoveryError):
    def __init__(self, api: str, host: str, detail: str) -> None:
        super().__init__(f"bad {api} API payload from {host}: {detail}")
        self.api = api
        self.host = host
        self.detail = detail


class PartialResultsError(DiscoveryError):
    """A failure that still carries the devices that could be produced."""

    def __init__(self, message: str, devices: Sequence[Device]) -> None:
        super().__init__(message)
        self.devices: list[Device] = list(devices)


class StaleResultsError(PartialResultsError):
    def __init__(self, devices: Sequence[Device], cause: BaseException) -> None:
        super().__init__(f"stale discovery results: {cause}", devices)
        self.cause = cause


class MultiDiscoveryError(PartialResultsError):
    def __init__(self, devices: Sequence[Device], errors: Sequence[Exception]) -> None:
        joined = "; ".join(str(error) for error in errors)
        super().__init__(joined, devices)
        self.errors: list[Exception] = list(errors)


def is_stale(exc: Optional[BaseException]) -> bool:
    """Whether ``exc`` reports stale data from any source, meaning results are still servable."""
    if isinstance(exc, StaleResultsError):
        return True
    if isinstance(exc, MultiDiscoveryError):
        return any(is_stale(error) for error in exc.errors)
    return False
