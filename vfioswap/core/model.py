"""Core data models used across engines, service, and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path


class Vendor(Enum):
    NVIDIA = "nvidia"
    AMD = "amd"
    INTEL = "intel"
    UNKNOWN = "unknown"


class NodeStrategy(Enum):
    GLOBAL_GLOB = "global_glob"
    DRM_PER_DEVICE = "drm_per_device"
    NONE = "none"


class ExitStatus(IntEnum):
    SUCCESS = 0
    FAILURE = 1


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    interval: float


class Direction(Enum):
    TO_ISOLATION = "to_isolation"
    TO_HOST = "to_host"

    @property
    def bind_policy(self) -> RetryPolicy:
        if self is Direction.TO_ISOLATION:
            return RetryPolicy(attempts=5, interval=0.2)
        return RetryPolicy(attempts=3, interval=0.2)


@dataclass(frozen=True)
class ExecutionContext:
    dry_run: bool = False
    verbose: bool = False
    force: bool = False
    require_consent: bool = True


@dataclass(frozen=True)
class VendorProfile:
    strategy: NodeStrategy
    driver: str | None = None
    node_pattern: str | None = None
    companion_service: str | None = None


@dataclass(frozen=True)
class DeviceDescriptor:
    device_id: str
    vendor: Vendor
    vendor_code: str | None
    driver: str | None
    nodes: frozenset[Path] = frozenset()


@dataclass(frozen=True)
class TransferRecord:
    device_id: str
    driver: str

    def to_line(self) -> str:
        return f"{self.device_id},{self.driver}\n"


@dataclass(frozen=True)
class EvictionTarget:
    pid: int
    name: str


@dataclass(frozen=True)
class EvictionReport:
    nodes: frozenset[Path]
    targets: tuple[EvictionTarget, ...] = ()
    steps: tuple[str, ...] = ()
    dry_run: bool = False


@dataclass(frozen=True)
class RebindResult:
    device_id: str
    requested: str
    driver: str | None
    changed: bool = True
    dry_run: bool = False

    @property
    def matched(self) -> bool:
        return self.driver == self.requested


@dataclass(frozen=True)
class ConsumerIdentity:
    user: str
    group: str


@dataclass(frozen=True)
class SwapConfig:
    devices: tuple[str, ...] = ("0000:01:00.1", "0000:01:00.0")
    isolation_driver: str = "vfio-pci"
    consumer: ConsumerIdentity = ConsumerIdentity(user="user", group="kvm")
    ledger_path: Path = Path("/run/vfioswap.ledger")
    companion_service: str | None = None
    restart_companion: bool = True
    optional_modules: tuple[str, ...] = ("kvmfr",)
    extra_handles: tuple[Path, ...] = (Path("/dev/kvmfr0"),)


@dataclass(frozen=True)
class AcquireReport:
    devices: tuple[DeviceDescriptor, ...]
    rebinds: tuple[RebindResult, ...]
    eviction: EvictionReport
    handles: tuple[Path, ...] = ()
    dry_run: bool = False

    @property
    def exit_status(self) -> ExitStatus:
        return ExitStatus.SUCCESS


@dataclass(frozen=True)
class DeviceFailure:
    device_id: str
    driver: str
    reason: str


@dataclass(frozen=True)
class ReleaseReport:
    restored: tuple[RebindResult, ...] = ()
    failures: tuple[DeviceFailure, ...] = ()
    ledger_cleared: bool = False
    dry_run: bool = False

    @property
    def exit_status(self) -> ExitStatus:
        return ExitStatus.FAILURE if self.failures else ExitStatus.SUCCESS


@dataclass(frozen=True)
class DeviceStatus:
    device_id: str
    driver: str | None
    present: bool


@dataclass(frozen=True)
class StatusReport:
    ledger_path: Path
    active: bool
    records: tuple[TransferRecord, ...] = ()
    devices: tuple[DeviceStatus, ...] = field(default_factory=tuple)
