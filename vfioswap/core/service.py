"""Service layer used by the CLI and the public API."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path

from vfioswap.core.classifier import companion_service, expected_driver
from vfioswap.core.errors import (
    AlreadyIsolatedError,
    IsolationGroupError,
    ModuleLoadError,
    NothingToRestoreError,
    PrivilegeError,
    VfioSwapError,
)
from vfioswap.core.eviction import Confirm, EvictionEngine
from vfioswap.core.ledger import TransferLedger
from vfioswap.core.model import (
    AcquireReport,
    DeviceDescriptor,
    DeviceFailure,
    DeviceStatus,
    Direction,
    ExecutionContext,
    RebindResult,
    ReleaseReport,
    StatusReport,
    SwapConfig,
    TransferRecord,
)
from vfioswap.core.pci import resolve_device, validate_device_id
from vfioswap.core.rebind import RebindEngine
from vfioswap.core.retry import Sleep
from vfioswap.host.base import HostSystem, PciBus, ProcessControl
from vfioswap.host.processes import ProcfsProcessControl
from vfioswap.host.prompt import timed_confirm
from vfioswap.host.sysfs import SysfsPciBus
from vfioswap.host.system import SystemCommands

LOGGER = logging.getLogger(__name__)

HANDLE_MODE = 0o660


class SwapService:
    def __init__(
        self,
        config: SwapConfig | None = None,
        *,
        bus: PciBus | None = None,
        processes: ProcessControl | None = None,
        system: HostSystem | None = None,
        confirm: Confirm | None = None,
        sleep: Sleep = time.sleep,
        dev_root: Path = Path("/dev"),
    ) -> None:
        self.config = config or SwapConfig()
        self.bus = bus or SysfsPciBus()
        self.system = system or SystemCommands()
        self.dev_root = Path(dev_root)
        self.eviction = EvictionEngine(
            processes or ProcfsProcessControl(),
            confirm=confirm or timed_confirm,
            sleep=sleep,
        )
        self.rebind = RebindEngine(self.bus, sleep=sleep)

    def acquire_for_isolation(
        self,
        device_specs: list[str] | tuple[str, ...] | None,
        context: ExecutionContext,
        *,
        restart_companion: bool = False,
    ) -> AcquireReport:
        _ensure_root(context)
        ledger = TransferLedger.open(self.config.ledger_path)

        specs = list(device_specs or self.config.devices)
        device_ids = list(dict.fromkeys(validate_device_id(spec) for spec in specs))
        devices = tuple(resolve_device(d, self.bus, dev_root=self.dev_root) for d in device_ids)
        LOGGER.info("Devices: %s", ", ".join(d.device_id for d in devices))

        previously_active = ledger.is_active()
        if previously_active and not context.force:
            raise AlreadyIsolatedError(
                f"Devices already appear to be isolated (ledger {ledger.path} is not empty). "
                "Run 'vfioswap release' first or pass --force."
            )

        if context.dry_run:
            LOGGER.info("=== DRY RUN MODE - No changes will be made ===")

        nodes: set[Path] = set()
        for device in devices:
            hint = expected_driver(device.vendor)
            LOGGER.debug(
                "%s: vendor %s (%s), driver %s, expected host driver %s",
                device.device_id,
                device.vendor.value,
                device.vendor_code,
                device.driver or "<none>",
                hint or "<unknown>",
            )
            nodes.update(device.nodes)

        self._load_modules(context)
        eviction = self.eviction.evict(nodes, context)

        target = self.config.isolation_driver
        rebinds: list[RebindResult] = []
        try:
            if not context.dry_run:
                if previously_active:
                    LOGGER.warning("Keeping existing ledger records in %s (--force)", ledger.path)
                else:
                    ledger.initialize_empty()

            for device in devices:
                rebinds.append(self._isolate(device, ledger, context))

            handles = self._grant_handles(devices, context)
        except BaseException:
            if not context.dry_run:
                _preserve_after_failure(ledger)
            raise

        if restart_companion:
            self._restart_companion(devices, context)

        LOGGER.info("Devices ready for %s.", target)
        return AcquireReport(
            devices=devices,
            rebinds=tuple(rebinds),
            eviction=eviction,
            handles=handles,
            dry_run=context.dry_run,
        )

    def release_to_host(
        self,
        context: ExecutionContext,
        *,
        restart_companion: bool | None = None,
    ) -> ReleaseReport:
        _ensure_root(context)
        ledger = TransferLedger.open(self.config.ledger_path)
        if not ledger.is_active():
            if not context.force:
                raise NothingToRestoreError(
                    f"Nothing to restore: no ledger found at {ledger.path}. "
                    "Did you run 'vfioswap acquire'?"
                )
            LOGGER.warning("No ledger at %s; nothing to restore.", ledger.path)
            if not context.dry_run:
                ledger.discard_if_empty()
            return ReleaseReport(dry_run=context.dry_run)

        records = ledger.records()
        if context.dry_run:
            LOGGER.info("=== DRY RUN MODE - No changes will be made ===")
            for record in records:
                LOGGER.info("Ledger: %s -> %s", record.device_id, record.driver)

        restored: list[RebindResult] = []
        failures: list[DeviceFailure] = []
        for record in records:
            LOGGER.info("--- Restoring %s to '%s' ---", record.device_id, record.driver)
            try:
                restored.append(
                    self.rebind.transfer(record.device_id, record.driver, Direction.TO_HOST, context)
                )
            except VfioSwapError as exc:
                LOGGER.error("%s", exc)
                failures.append(DeviceFailure(device_id=record.device_id, driver=record.driver, reason=str(exc)))

        cleared = False
        if failures:
            LOGGER.warning(
                "Devices still need attention: %s. Ledger preserved at %s; review errors and run again.",
                ", ".join(f.device_id for f in failures),
                ledger.path,
            )
        elif not context.dry_run:
            ledger.clear()
            cleared = True
            LOGGER.debug("Ledger removed")

        should_restart = self.config.restart_companion if restart_companion is None else restart_companion
        if should_restart:
            self._restart_companion(self._describe_records(records), context)

        if failures:
            LOGGER.warning("Devices returned to host with errors.")
        else:
            LOGGER.info("Devices returned to host successfully.")
        return ReleaseReport(
            restored=tuple(restored),
            failures=tuple(failures),
            ledger_cleared=cleared,
            dry_run=context.dry_run,
        )

    def status(self) -> StatusReport:
        ledger = TransferLedger.open(self.config.ledger_path)
        records = ledger.records()
        device_ids = list(dict.fromkeys([r.device_id for r in records] + [
            validate_device_id(spec) for spec in self.config.devices
        ]))
        devices = tuple(
            DeviceStatus(
                device_id=device_id,
                driver=self.bus.current_driver(device_id) if self.bus.exists(device_id) else None,
                present=self.bus.exists(device_id),
            )
            for device_id in device_ids
        )
        return StatusReport(
            ledger_path=ledger.path,
            active=ledger.is_active(),
            records=records,
            devices=devices,
        )

    def _isolate(
        self,
        device: DeviceDescriptor,
        ledger: TransferLedger,
        context: ExecutionContext,
    ) -> RebindResult:
        target = self.config.isolation_driver
        current = self.bus.current_driver(device.device_id)
        if current == target:
            LOGGER.info("%s is already bound to %s.", device.device_id, target)
            return RebindResult(device_id=device.device_id, requested=target, driver=current, changed=False)

        if current is None:
            LOGGER.warning("%s has no driver; nothing to record for it.", device.device_id)
        elif context.dry_run:
            LOGGER.info("[DRY-RUN] Would save state: %s uses %s", device.device_id, current)
        else:
            ledger.append(TransferRecord(device_id=device.device_id, driver=current))

        return self.rebind.transfer(device.device_id, target, Direction.TO_ISOLATION, context)

    def _load_modules(self, context: ExecutionContext) -> None:
        LOGGER.info("Loading required kernel modules...")
        for module in self.config.optional_modules:
            if context.dry_run:
                LOGGER.info("[DRY-RUN] Would execute: modprobe %s", module)
            elif not self.system.load_module(module):
                LOGGER.warning("%s module not available (optional)", module)

        driver = self.config.isolation_driver
        if context.dry_run:
            LOGGER.info("[DRY-RUN] Would execute: modprobe %s", driver)
            return
        if not self.system.load_module(driver):
            raise ModuleLoadError(f"Failed to load {driver} module. Is VFIO enabled in the kernel?")
        if not self.bus.has_driver(driver):
            raise ModuleLoadError(f"{driver} driver not available after modprobe")

    def _grant_handles(self, devices: tuple[DeviceDescriptor, ...], context: ExecutionContext) -> tuple[Path, ...]:
        groups: list[str] = []
        for device in devices:
            group = self.bus.iommu_group(device.device_id)
            if group is None:
                raise IsolationGroupError(
                    f"Device {device.device_id} is not in an IOMMU group. Check that the IOMMU is enabled "
                    "in firmware and on the kernel command line (intel_iommu=on or amd_iommu=on)."
                )
            LOGGER.debug("IOMMU group of %s: %s", device.device_id, group)
            if group not in groups:
                groups.append(group)

        consumer = self.config.consumer
        granted: list[Path] = []
        candidates = [(self.dev_root / "vfio" / g, True) for g in groups]
        candidates += [(handle, False) for handle in self.config.extra_handles]
        for path, required in candidates:
            if not path.exists():
                if required:
                    LOGGER.warning("%s not found - the VM may need root", path)
                continue
            if context.dry_run:
                LOGGER.info("[DRY-RUN] Would set %s to %s:%s mode 660", path, consumer.user, consumer.group)
            else:
                self.system.set_owner(path, consumer.user, consumer.group, HANDLE_MODE)
                LOGGER.info("Permissions set for %s", path)
            granted.append(path)
        return tuple(granted)

    def _describe_records(self, records: tuple[TransferRecord, ...]) -> tuple[DeviceDescriptor, ...]:
        devices: list[DeviceDescriptor] = []
        for record in records:
            if self.bus.exists(record.device_id):
                devices.append(resolve_device(record.device_id, self.bus, dev_root=self.dev_root))
        return tuple(devices)

    def _restart_companion(self, devices: tuple[DeviceDescriptor, ...], context: ExecutionContext) -> None:
        if self.config.companion_service:
            services = [self.config.companion_service]
        else:
            services = list(dict.fromkeys(
                s for s in (companion_service(d.vendor) for d in devices) if s
            ))
        if not services:
            LOGGER.debug("No companion service to restart")
            return

        for service in services:
            if context.dry_run:
                LOGGER.info("[DRY-RUN] Would restart %s if present", service)
                continue
            if not self.system.service_installed(service):
                LOGGER.debug("%s service not found", service)
                continue
            LOGGER.info("Restarting %s...", service)
            if not self.system.restart_service(service):
                LOGGER.warning("Failed to restart %s (non-fatal)", service)


def _ensure_root(context: ExecutionContext) -> None:
    if os.geteuid() == 0:
        return
    if context.dry_run:
        LOGGER.warning("Not running as root. Some checks may be incomplete.")
        return
    raise PrivilegeError("This operation must be run as root.")


def _preserve_after_failure(ledger: TransferLedger) -> None:
    try:
        if ledger.discard_if_empty():
            return
    except OSError as exc:
        LOGGER.debug("Could not inspect ledger %s: %s", ledger.path, exc)
    if ledger.path.exists():
        LOGGER.warning(
            "Transfer interrupted or failed. Ledger preserved at %s; run 'vfioswap release' to recover.",
            ledger.path,
        )
