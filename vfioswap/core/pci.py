"""PCI device identifier validation and lookup."""

from __future__ import annotations

import re
from pathlib import Path

from vfioswap.core.classifier import classify, device_nodes
from vfioswap.core.errors import NotFoundError, ValidationError
from vfioswap.core.model import DeviceDescriptor
from vfioswap.host.base import PciBus

DEFAULT_DOMAIN = "0000"
_FULL_ID_RE = re.compile(r"[0-9a-fA-F]{4}:[0-9a-fA-F]{2}:[0-9a-fA-F]{2}\.[0-9a-fA-F]")
_SHORT_ID_RE = re.compile(r"[0-9a-fA-F]{2}:[0-9a-fA-F]{2}\.[0-9a-fA-F]")


def is_device_id(value: str) -> bool:
    return bool(_FULL_ID_RE.fullmatch(value))


def validate_device_id(raw: str) -> str:
    if _SHORT_ID_RE.fullmatch(raw):
        raw = f"{DEFAULT_DOMAIN}:{raw}"
    if not _FULL_ID_RE.fullmatch(raw):
        raise ValidationError(
            f"Invalid PCI device ID '{raw}'. Expected DDDD:BB:DD.F (e.g. 0000:01:00.0) or BB:DD.F."
        )
    return raw.lower()


def resolve_device(device_id: str, bus: PciBus, *, dev_root: Path = Path("/dev")) -> DeviceDescriptor:
    if not bus.exists(device_id):
        raise NotFoundError(
            f"Device {device_id} not found in the PCI registry. Use 'lspci -D' to find valid IDs."
        )
    bus.wake(device_id)
    vendor_code = bus.vendor_code(device_id)
    vendor = classify(vendor_code)
    return DeviceDescriptor(
        device_id=device_id,
        vendor=vendor,
        vendor_code=vendor_code,
        driver=bus.current_driver(device_id),
        nodes=device_nodes(vendor, device_id, bus, dev_root=dev_root),
    )
