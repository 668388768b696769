from __future__ import annotations

import signal
import subprocess
from pathlib import Path

import pytest

from vfioswap.core.errors import EvictionAbort
from vfioswap.host import processes
from vfioswap.host.processes import ProcfsProcessControl


def _completed(stdout: str = "", returncode: int = 0) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")


def test_holders_parses_fuser_stdout(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    node = tmp_path / "nvidia0"
    node.touch()
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(list(cmd))
        return _completed(stdout=" 1234 5678")

    monkeypatch.setattr(subprocess, "run", fake_run)

    assert ProcfsProcessControl().holders([node, tmp_path / "missing"]) == {1234, 5678}
    assert calls == [["fuser", str(node)]]


def test_holders_with_no_existing_nodes_skips_fuser(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    def fail_run(cmd, **kwargs):
        raise AssertionError("fuser should not run")

    monkeypatch.setattr(subprocess, "run", fail_run)
    assert ProcfsProcessControl().holders([tmp_path / "missing"]) == set()


def test_missing_fuser_aborts(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    node = tmp_path / "card0"
    node.touch()

    def missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", missing)
    with pytest.raises(EvictionAbort, match="fuser"):
        ProcfsProcessControl().holders([node])


def test_process_name_reads_comm(tmp_path: Path) -> None:
    (tmp_path / "42").mkdir()
    (tmp_path / "42" / "comm").write_text("steam\n")
    control = ProcfsProcessControl(tmp_path)
    assert control.process_name(42) == "steam"
    assert control.process_name(43) is None


def test_signal_pid_ignores_exited_process(monkeypatch: pytest.MonkeyPatch) -> None:
    def gone(pid, signum):
        raise ProcessLookupError(pid)

    monkeypatch.setattr(processes.os, "kill", gone)
    ProcfsProcessControl().signal_pid(99999, signal.SIGTERM)


def test_signal_name_uses_exact_match(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[list[str]] = []

    def fake_run(cmd, **kwargs):
        calls.append(list(cmd))
        return _completed(returncode=1)

    monkeypatch.setattr(subprocess, "run", fake_run)
    ProcfsProcessControl().signal_name("chrome", signal.SIGKILL)
    assert calls == [["pkill", "-9", "-x", "chrome"]]
