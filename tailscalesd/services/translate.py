from __future__ import annotations

import ipaddress
import re
from typing import Callable, Iterable, Sequence

from tailscalesd.schemas.devices import Device, TargetDescriptor

# Host which provided the details about this device; "localhost" for the local API.
LABEL_META_API = "__meta_tailscale_api"
# Always true when using the local API.
LABEL_META_DEVICE_AUTHORIZED = "__meta_tailscale_device_authorized"
# Not reported when using the local API.
LABEL_META_DEVICE_CLIENT_VERSION = "__meta_tailscale_device_client_version"
LABEL_META_DEVICE_HOSTNAME = "__meta_tailscale_device_hostname"
LABEL_META_DEVICE_ID = "__meta_tailscale_device_id"
# Not reported when using the local API.
LABEL_META_DEVICE_NAME = "__meta_tailscale_device_name"
LABEL_META_DEVICE_ONLINE = "__meta_tailscale_device_online"
LABEL_META_DEVICE_OS = "__meta_tailscale_device_os"
# Not reported when using the local API.
LABEL_META_TAILNET = "__meta_tailscale_tailnet"
LABEL_META_DEVICE_TAG_PREFIX = "__meta_tailscale_device_tag_"

EMPTY_TAG_PLACEHOLDER = "EMPTY"

TargetFilter = Callable[[TargetDescriptor], TargetDescriptor]

_TAG_REPLACE_RE = re.compile(r"[:-]")


def _bool_label(value: bool) -> str:
    return "true" if value else "false"


def tag_to_label_key(tag: str) -> str:
    """Translate a Tailscale ACL tag into a Prometheus label key.

    ``tag:Prod-1234`` becomes ``__meta_tailscale_device_tag_prod_1234``.
    """
    value = tag[len("tag:") :] if tag.startswith("tag:") else tag
    value = _TAG_REPLACE_RE.sub("_", value.lower())
    return LABEL_META_DEVICE_TAG_PREFIX + (value or EMPTY_TAG_PLACEHOLDER)


def filter_empty_labels(descriptor: TargetDescriptor) -> TargetDescriptor:
    labels = {key: value for key, value in descriptor.labels.items() if key and value}
    return TargetDescriptor(targets=list(descriptor.targets), labels=labels)


def filter_ipv6_addresses(descriptor: TargetDescriptor) -> TargetDescriptor:
    """Keep only IPv4 targets.

    IPv4-mapped IPv6 addresses are rewritten to dotted IPv4. Targets which are
    not IP addresses at all are left in place so misconfiguration stays
    visible downstream.
    """
    targets: list[str] = []
    for target in descriptor.targets:
        try:
            address = ipaddress.ip_address(target)
        except ValueError:
            targets.append(target)
            continue
        if isinstance(address, ipaddress.IPv4Address):
            targets.append(str(address))
        elif address.ipv4_mapped is not None:
            targets.append(str(address.ipv4_mapped))
    return TargetDescriptor(targets=targets, labels=dict(descriptor.labels))


def _device_labels(device: Device) -> dict[str, str]:
    labels = {
        LABEL_META_API: device.api,
        LABEL_META_DEVICE_AUTHORIZED: _bool_label(device.authorized),
        LABEL_META_DEVICE_CLIENT_VERSION: device.client_version,
        LABEL_META_DEVICE_HOSTNAME: device.hostname,
        LABEL_META_DEVICE_ID: device.id,
        LABEL_META_DEVICE_NAME: device.name,
        LABEL_META_DEVICE_ONLINE: _bool_label(device.online),
        LABEL_META_DEVICE_OS: device.os,
        LABEL_META_TAILNET: device.tailnet,
    }
    for tag in sorted(device.tags):
        labels[tag_to_label_key(tag)] = "1"
    return labels


def translate(
    devices: Iterable[Device],
    filters: Sequence[TargetFilter] = (),
) -> list[TargetDescriptor]:
    """Build one target descriptor per device, then run ``filters`` over it in order."""
    found: list[TargetDescriptor] = []
    for device in devices:
        descriptor = TargetDescriptor(targets=list(device.addresses), labels=_device_labels(device))
        for target_filter in filters:
            descriptor = target_filter(descriptor)
        found.append(descriptor)
    return found
