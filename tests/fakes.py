from __future__ import annotations

import signal
from collections.abc import Iterable
from pathlib import Path


class FakeBus:
    def __init__(
        self,
        drivers: dict[str, str | None],
        *,
        vendors: dict[str, str] | None = None,
        groups: dict[str, str] | None = None,
        drm: dict[str, list[str]] | None = None,
        available: Iterable[str] = ("vfio-pci",),
    ) -> None:
        self.drivers = dict(drivers)
        self.vendors = vendors or {}
        self.groups = groups or {}
        self.drm = drm or {}
        self.available = set(available)
        self.overrides: dict[str, str] = {}
        self.writes: list[tuple[str, str, str]] = []
        self.woken: list[str] = []
        self.stuck_unbind: set[str] = set()
        self.fail_unbind: set[str] = set()
        self.fail_bind: set[str] = set()
        self.redirect: dict[str, str | None] = {}
        self.probe_result: dict[str, str] = {}

    def exists(self, device_id: str) -> bool:
        return device_id in self.drivers

    def vendor_code(self, device_id: str) -> str | None:
        return self.vendors.get(device_id)

    def current_driver(self, device_id: str) -> str | None:
        return self.drivers.get(device_id)

    def has_driver(self, driver: str) -> bool:
        return driver in self.available

    def wake(self, device_id: str) -> None:
        self.woken.append(device_id)

    def drm_names(self, device_id: str) -> list[str]:
        return list(self.drm.get(device_id, []))

    def iommu_group(self, device_id: str) -> str | None:
        return self.groups.get(device_id)

    def unbind(self, device_id: str) -> None:
        self.writes.append(("unbind", device_id, self.drivers[device_id] or ""))
        if device_id in self.fail_unbind:
            raise OSError("Device or resource busy")
        if device_id not in self.stuck_unbind:
            self.drivers[device_id] = None

    def set_driver_override(self, device_id: str, driver: str) -> None:
        self.writes.append(("driver_override", device_id, driver))
        self.overrides[device_id] = driver

    def bind(self, driver: str, device_id: str) -> None:
        self.writes.append(("bind", device_id, driver))
        if device_id in self.fail_bind:
            raise OSError("No such device")
        self.drivers[device_id] = self.redirect.get(device_id, driver)

    def probe(self, device_id: str) -> None:
        self.writes.append(("probe", device_id, ""))
        if device_id in self.probe_result:
            self.drivers[device_id] = self.probe_result[device_id]


class FakeProcesses:
    """Holder table whose processes exit at a chosen escalation stage.

    ``exits_on`` is one of "pid", "name_term", "name_kill" or None (never).
    """

    def __init__(self, table: dict[int, str] | None = None, *, exits_on: str | None = "pid") -> None:
        self.table = dict(table or {})
        self.exits_on = exits_on
        self.signals: list[tuple[str, object, int]] = []

    def holders(self, nodes: Iterable[Path]) -> set[int]:
        if not list(nodes):
            return set()
        return set(self.table)

    def process_name(self, pid: int) -> str | None:
        return self.table.get(pid)

    def signal_pid(self, pid: int, signum: int) -> None:
        self.signals.append(("pid", pid, signum))
        if self.exits_on == "pid":
            self.table.pop(pid, None)

    def signal_name(self, name: str, signum: int) -> None:
        self.signals.append(("name", name, signum))
        exits = (self.exits_on == "name_term" and signum == signal.SIGTERM) or (
            self.exits_on in {"name_term", "name_kill"} and signum == signal.SIGKILL
        )
        if exits:
            self.table = {pid: n for pid, n in self.table.items() if n != name}


class FakeSystem:
    def __init__(
        self,
        *,
        loadable: Iterable[str] = ("vfio-pci", "kvmfr"),
        services: Iterable[str] = (),
        restart_ok: bool = True,
    ) -> None:
        self.loadable = set(loadable)
        self.services = set(services)
        self.restart_ok = restart_ok
        self.modules: list[str] = []
        self.restarted: list[str] = []
        self.owners: list[tuple[Path, str, str, int]] = []

    def load_module(self, name: str) -> bool:
        self.modules.append(name)
        return name in self.loadable

    def service_installed(self, name: str) -> bool:
        return name in self.services

    def restart_service(self, name: str) -> bool:
        self.restarted.append(name)
        return self.restart_ok

    def set_owner(self, path: Path, user: str, group: str, mode: int) -> None:
        self.owners.append((path, user, group, mode))


def no_sleep(_: float) -> None:
    return None
