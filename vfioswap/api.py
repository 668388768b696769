"""Stable public API for building tooling on top of vfioswap.

VM hook scripts and other callers should import from here. The `core` and
`host` packages may change between releases.
"""

from __future__ import annotations

import logging
from pathlib import Path

from vfioswap.core.config_loader import load_config
from vfioswap.core.errors import (
    AlreadyIsolatedError,
    ConfigError,
    EvictionAbort,
    IsolationGroupError,
    ModuleLoadError,
    NotFoundError,
    NothingToRestoreError,
    PermissionSetupError,
    PrivilegeError,
    RebindFailure,
    SecurityError,
    ValidationError,
    VfioSwapError,
)
from vfioswap.core.model import (
    AcquireReport,
    ExecutionContext,
    ExitStatus,
    ReleaseReport,
    StatusReport,
    SwapConfig,
    TransferRecord,
)
from vfioswap.core.service import SwapService

__all__ = [
    "VfioSwapError",
    "AlreadyIsolatedError",
    "ConfigError",
    "EvictionAbort",
    "IsolationGroupError",
    "ModuleLoadError",
    "NotFoundError",
    "NothingToRestoreError",
    "PermissionSetupError",
    "PrivilegeError",
    "RebindFailure",
    "SecurityError",
    "ValidationError",
    "AcquireReport",
    "ExecutionContext",
    "ExitStatus",
    "ReleaseReport",
    "StatusReport",
    "SwapConfig",
    "TransferRecord",
    "Client",
    "acquire_for_isolation",
    "release_to_host",
]

LOGGER = logging.getLogger(__name__)


class Client:
    """Public client wrapping config loading and the swap service.

    Pass ``config`` to bypass config-file discovery, or ``config_path`` to
    load a specific file. Extra keyword arguments reach `SwapService` and
    let callers substitute host adapters.
    """

    def __init__(
        self,
        *,
        config: SwapConfig | None = None,
        config_path: Path | None = None,
        **service_kwargs,
    ) -> None:
        warnings: tuple[str, ...] = ()
        if config is None:
            loaded = load_config(config_path)
            config, warnings = loaded.config, loaded.warnings
        self.config_warnings = warnings
        self._service = SwapService(config, **service_kwargs)

    @property
    def config(self) -> SwapConfig:
        return self._service.config

    def acquire(
        self,
        device_specs: list[str] | None,
        context: ExecutionContext,
        *,
        restart_companion: bool = False,
    ) -> AcquireReport:
        return self._service.acquire_for_isolation(
            device_specs,
            context,
            restart_companion=restart_companion,
        )

    def release(
        self,
        context: ExecutionContext,
        *,
        restart_companion: bool | None = None,
    ) -> ReleaseReport:
        return self._service.release_to_host(context, restart_companion=restart_companion)

    def status(self) -> StatusReport:
        return self._service.status()


def acquire_for_isolation(
    device_specs: list[str] | None,
    context: ExecutionContext,
    *,
    config: SwapConfig | None = None,
    **service_kwargs,
) -> ExitStatus:
    try:
        report = Client(config=config, **service_kwargs).acquire(device_specs, context)
    except VfioSwapError as exc:
        LOGGER.error("%s", exc)
        return ExitStatus.FAILURE
    return report.exit_status


def release_to_host(
    context: ExecutionContext,
    *,
    config: SwapConfig | None = None,
    **service_kwargs,
) -> ExitStatus:
    try:
        report = Client(config=config, **service_kwargs).release(context)
    except VfioSwapError as exc:
        LOGGER.error("%s", exc)
        return ExitStatus.FAILURE
    return report.exit_status
