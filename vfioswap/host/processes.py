"""Process discovery and signalling via fuser, procfs and pkill."""

from __future__ import annotations

import os
import re
import subprocess
from collections.abc import Iterable, Sequence
from pathlib import Path

from vfioswap.core.errors import EvictionAbort

_PID_RE = re.compile(r"\b(\d+)\b")


class ProcfsProcessControl:
    def __init__(self, proc_root: Path = Path("/proc")) -> None:
        self.proc_root = Path(proc_root)

    def holders(self, nodes: Iterable[Path]) -> set[int]:
        existing = sorted(str(node) for node in nodes if os.path.exists(node))
        if not existing:
            return set()

        result = _run(["fuser", *existing])
        if result is None:
            raise EvictionAbort("fuser is not installed; cannot verify that the device is free.")
        # fuser writes PIDs to stdout and file names/access flags to stderr.
        return {int(pid) for pid in _PID_RE.findall(result.stdout or "")}

    def process_name(self, pid: int) -> str | None:
        try:
            return (self.proc_root / str(pid) / "comm").read_text(encoding="utf-8").strip() or None
        except OSError:
            return None

    def signal_pid(self, pid: int, signum: int) -> None:
        try:
            os.kill(pid, signum)
        except ProcessLookupError:
            pass

    def signal_name(self, name: str, signum: int) -> None:
        # pkill exits 1 when nothing matched, which is not an error here.
        _run(["pkill", f"-{int(signum)}", "-x", name])


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
