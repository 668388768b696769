"""Vendor classification and user-space handle discovery."""

from __future__ import annotations

from pathlib import Path

from vfioswap.core.model import NodeStrategy, Vendor, VendorProfile
from vfioswap.host.base import PciBus

VENDOR_CODES: dict[str, Vendor] = {
    "0x10de": Vendor.NVIDIA,
    "0x1002": Vendor.AMD,
    "0x8086": Vendor.INTEL,
}

VENDOR_PROFILES: dict[Vendor, VendorProfile] = {
    Vendor.NVIDIA: VendorProfile(
        strategy=NodeStrategy.GLOBAL_GLOB,
        driver="nvidia",
        node_pattern="nvidia*",
        companion_service="nvidia-persistenced",
    ),
    Vendor.AMD: VendorProfile(strategy=NodeStrategy.DRM_PER_DEVICE, driver="amdgpu"),
    Vendor.INTEL: VendorProfile(strategy=NodeStrategy.DRM_PER_DEVICE, driver="i915"),
    Vendor.UNKNOWN: VendorProfile(strategy=NodeStrategy.NONE),
}


def classify(vendor_code: str | None) -> Vendor:
    if not vendor_code:
        return Vendor.UNKNOWN
    return VENDOR_CODES.get(vendor_code.strip().lower(), Vendor.UNKNOWN)


def device_nodes(
    vendor: Vendor,
    device_id: str,
    bus: PciBus,
    *,
    dev_root: Path = Path("/dev"),
) -> frozenset[Path]:
    profile = VENDOR_PROFILES[vendor]
    if profile.strategy is NodeStrategy.GLOBAL_GLOB and profile.node_pattern:
        return frozenset(path for path in dev_root.glob(profile.node_pattern) if path.exists())
    if profile.strategy is NodeStrategy.DRM_PER_DEVICE:
        dri = dev_root / "dri"
        return frozenset(dri / name for name in bus.drm_names(device_id) if (dri / name).exists())
    return frozenset()


def expected_driver(vendor: Vendor) -> str | None:
    return VENDOR_PROFILES[vendor].driver


def companion_service(vendor: Vendor) -> str | None:
    return VENDOR_PROFILES[vendor].companion_service
