from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class Device(BaseModel):
    """One tailnet member as reported by one of the Tailscale APIs.

    ``id`` is opaque: the public API reports a large integer, the local API an
    encoded string. Numeric ids are coerced to strings and never parsed.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, coerce_numbers_to_str=True)

    addresses: tuple[str, ...] = ()
    api: str = ""
    authorized: bool = False
    client_version: str = Field(default="", alias="clientVersion")
    hostname: str = ""
    id: str = ""
    name: str = ""
    online: bool = False
    os: str = ""
    tailnet: str = ""
    tags: frozenset[str] = frozenset()

    @field_serializer("tags")
    def _sorted_tags(self, tags: frozenset[str]) -> list[str]:
        return sorted(tags)


class TargetDescriptor(BaseModel):
    """A Prometheus HTTP SD target group."""

    model_config = ConfigDict(frozen=True)

    targets: list[str]
    labels: dict[str, str] = Field(default_factory=dict)

    @field_serializer("labels")
    def _sorted_labels(self, labels: dict[str, str]) -> dict[str, str]:
        return dict(sorted(labels.items()))

    def to_payload(self) -> dict[str, object]:
        return self.model_dump(exclude_defaults=True)
