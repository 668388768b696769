"""Kernel module, service manager and file ownership commands."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from collections.abc import Sequence
from pathlib import Path

from vfioswap.core.errors import PermissionSetupError

LOGGER = logging.getLogger(__name__)


class SystemCommands:
    def load_module(self, name: str) -> bool:
        result = _run(["modprobe", name])
        if result is None:
            LOGGER.warning("modprobe is not installed")
            return False
        if result.returncode != 0:
            LOGGER.debug("modprobe %s failed: %s", name, (result.stderr or "").strip())
            return False
        return True

    def service_installed(self, name: str) -> bool:
        unit = name if name.endswith(".service") else f"{name}.service"
        result = _run(["systemctl", "list-unit-files", unit])
        if result is None or result.returncode != 0:
            return False
        return unit in (result.stdout or "")

    def restart_service(self, name: str) -> bool:
        result = _run(["systemctl", "restart", name])
        if result is None or result.returncode != 0:
            stderr = (result.stderr or "").strip() if result is not None else "systemctl not found"
            LOGGER.debug("systemctl restart %s failed: %s", name, stderr)
            return False
        return True

    def set_owner(self, path: Path, user: str, group: str, mode: int) -> None:
        try:
            shutil.chown(path, user=user, group=group)
            os.chmod(path, mode)
        except (LookupError, OSError) as exc:
            raise PermissionSetupError(f"Failed to set {path} to {user}:{group}: {exc}") from exc


def _run(cmd: Sequence[str]) -> subprocess.CompletedProcess[str] | None:
    try:
        return subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return None
