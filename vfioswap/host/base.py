"""Host adapter interfaces."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Protocol


class PciBus(Protocol):
    """Per-device control interface of the PCI bus."""

    def exists(self, device_id: str) -> bool: ...

    def vendor_code(self, device_id: str) -> str | None: ...

    def current_driver(self, device_id: str) -> str | None: ...

    def has_driver(self, driver: str) -> bool: ...

    def wake(self, device_id: str) -> None: ...

    def drm_names(self, device_id: str) -> list[str]: ...

    def iommu_group(self, device_id: str) -> str | None: ...

    def unbind(self, device_id: str) -> None: ...

    def set_driver_override(self, device_id: str, driver: str) -> None: ...

    def bind(self, driver: str, device_id: str) -> None: ...

    def probe(self, device_id: str) -> None: ...


class ProcessControl(Protocol):
    def holders(self, nodes: Iterable[Path]) -> set[int]:
        """Return PIDs holding any of the given device nodes open."""

    def process_name(self, pid: int) -> str | None: ...

    def signal_pid(self, pid: int, signum: int) -> None: ...

    def signal_name(self, name: str, signum: int) -> None: ...


class HostSystem(Protocol):
    def load_module(self, name: str) -> bool: ...

    def service_installed(self, name: str) -> bool: ...

    def restart_service(self, name: str) -> bool: ...

    def set_owner(self, path: Path, user: str, group: str, mode: int) -> None: ...
