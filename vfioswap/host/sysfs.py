"""PCI control interface backed by sysfs."""

from __future__ import annotations

import os
from pathlib import Path

SYSFS_PCI_ROOT = Path("/sys/bus/pci")


class SysfsPciBus:
    def __init__(self, root: Path = SYSFS_PCI_ROOT) -> None:
        self.root = Path(root)

    def device_path(self, device_id: str) -> Path:
        return self.root / "devices" / device_id

    def driver_path(self, driver: str) -> Path:
        return self.root / "drivers" / driver

    def exists(self, device_id: str) -> bool:
        return self.device_path(device_id).is_dir()

    def vendor_code(self, device_id: str) -> str | None:
        try:
            return (self.device_path(device_id) / "vendor").read_text(encoding="utf-8").strip().lower()
        except OSError:
            return None

    def current_driver(self, device_id: str) -> str | None:
        link = self.device_path(device_id) / "driver"
        if not os.path.lexists(link):
            return None
        return Path(os.path.realpath(link)).name

    def has_driver(self, driver: str) -> bool:
        return self.driver_path(driver).is_dir()

    def wake(self, device_id: str) -> None:
        # Reading config space brings a device out of D3 before it is rebound.
        config = self.device_path(device_id) / "config"
        try:
            with open(config, "rb") as handle:
                handle.read(64)
        except OSError:
            pass

    def drm_names(self, device_id: str) -> list[str]:
        drm = self.device_path(device_id) / "drm"
        if not drm.is_dir():
            return []
        return sorted(
            entry.name
            for entry in drm.iterdir()
            if entry.name.startswith(("card", "renderD"))
        )

    def iommu_group(self, device_id: str) -> str | None:
        link = self.device_path(device_id) / "iommu_group"
        if not os.path.lexists(link):
            return None
        return Path(os.path.realpath(link)).name

    def unbind(self, device_id: str) -> None:
        (self.device_path(device_id) / "driver" / "unbind").write_text(device_id, encoding="utf-8")

    def set_driver_override(self, device_id: str, driver: str) -> None:
        (self.device_path(device_id) / "driver_override").write_text(f"{driver}\n", encoding="utf-8")

    def bind(self, driver: str, device_id: str) -> None:
        bind_path = self.driver_path(driver) / "bind"
        if not bind_path.exists():
            raise FileNotFoundError(f"{bind_path} does not exist")
        bind_path.write_text(device_id, encoding="utf-8")

    def probe(self, device_id: str) -> None:
        (self.root / "drivers_probe").write_text(device_id, encoding="utf-8")
