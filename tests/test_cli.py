from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from vfioswap import cli
from vfioswap.core.config_loader import LoadedConfig
from vfioswap.core.errors import EvictionAbort, NothingToRestoreError
from vfioswap.core.model import (
    AcquireReport,
    DeviceFailure,
    DeviceStatus,
    EvictionReport,
    RebindResult,
    ReleaseReport,
    StatusReport,
    SwapConfig,
    TransferRecord,
)


class FakeService:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.acquire_error: BaseException | None = None
        self.release_report = ReleaseReport(
            restored=(RebindResult("0000:01:00.0", "nvidia", "nvidia"),),
            ledger_cleared=True,
        )

    def acquire_for_isolation(self, specs, context, *, restart_companion=False):
        self.calls.append(("acquire", specs, context, restart_companion))
        if self.acquire_error is not None:
            raise self.acquire_error
        return AcquireReport(
            devices=(),
            rebinds=(
                RebindResult("0000:01:00.1", "vfio-pci", "vfio-pci", changed=False),
                RebindResult("0000:01:00.0", "vfio-pci", "vfio-pci", dry_run=context.dry_run),
            ),
            eviction=EvictionReport(nodes=frozenset()),
            handles=(Path("/dev/vfio/13"),),
            dry_run=context.dry_run,
        )

    def release_to_host(self, context, *, restart_companion=None):
        self.calls.append(("release", context, restart_companion))
        return self.release_report

    def status(self):
        return StatusReport(
            ledger_path=Path("/run/vfioswap.ledger"),
            active=True,
            records=(TransferRecord("0000:01:00.0", "nvidia"),),
            devices=(
                DeviceStatus("0000:01:00.0", "vfio-pci", True),
                DeviceStatus("0000:01:00.1", None, True),
                DeviceStatus("0000:02:00.0", None, False),
            ),
        )


runner = CliRunner()


@pytest.fixture
def service(monkeypatch: pytest.MonkeyPatch) -> FakeService:
    fake = FakeService()
    monkeypatch.setattr(cli, "SwapService", lambda config: fake)
    monkeypatch.setattr(
        cli,
        "load_config",
        lambda path: LoadedConfig(config=SwapConfig(), source=None, warnings=()),
    )
    monkeypatch.setattr(cli.signal, "signal", lambda signum, handler: None)
    return fake


def test_acquire_orders_audio_before_gpu(service: FakeService) -> None:
    result = runner.invoke(cli.app, ["acquire", "--gpu", "01:00.0", "--audio", "01:00.1", "--yes"])

    assert result.exit_code == 0
    _, specs, context, restart = service.calls[0]
    assert specs == ["01:00.1", "01:00.0"]
    assert context.require_consent is False
    assert restart is False
    assert "0000:01:00.1 -> unchanged" in result.stdout
    assert "0000:01:00.0 -> vfio-pci" in result.stdout
    assert "granted /dev/vfio/13" in result.stdout
    assert "Devices ready for VM passthrough." in result.stdout


def test_acquire_without_devices_uses_configured_ones(service: FakeService) -> None:
    result = runner.invoke(cli.app, ["acquire", "--dry-run", "--force", "--restart-companion"])

    assert result.exit_code == 0
    _, specs, context, restart = service.calls[0]
    assert specs is None
    assert context.dry_run and context.force and context.require_consent
    assert restart is True
    assert "Dry run complete" in result.stdout


def test_acquire_error_exits_nonzero(service: FakeService) -> None:
    service.acquire_error = EvictionAbort("Display server (Xorg) is attached to this device.")
    result = runner.invoke(cli.app, ["acquire", "0000:01:00.0"])
    assert result.exit_code == 1
    assert "Error: Display server (Xorg)" in result.output


def test_acquire_interrupt_exits_130(service: FakeService) -> None:
    service.acquire_error = KeyboardInterrupt()
    result = runner.invoke(cli.app, ["acquire", "0000:01:00.0"])
    assert result.exit_code == 130


def test_release_prints_restored_devices(service: FakeService) -> None:
    result = runner.invoke(cli.app, ["release"])
    assert result.exit_code == 0
    assert "0000:01:00.0 -> nvidia" in result.stdout
    assert service.calls[0][2] is None


def test_release_can_skip_companion(service: FakeService) -> None:
    result = runner.invoke(cli.app, ["release", "--no-companion-restart"])
    assert result.exit_code == 0
    assert service.calls[0][2] is False


def test_release_failures_exit_nonzero(service: FakeService) -> None:
    service.release_report = ReleaseReport(
        failures=(DeviceFailure("0000:01:00.1", "snd_hda_intel", "no driver after rebind attempt"),),
    )
    result = runner.invoke(cli.app, ["release"])
    assert result.exit_code == 1
    assert "Failed: 0000:01:00.1 (snd_hda_intel)" in result.output


def test_release_nothing_to_restore(service: FakeService, monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(context, *, restart_companion=None):
        raise NothingToRestoreError("Nothing to restore: no ledger found at /run/vfioswap.ledger.")

    monkeypatch.setattr(service, "release_to_host", refuse)
    result = runner.invoke(cli.app, ["release"])
    assert result.exit_code == 1
    assert "Nothing to restore" in result.output


def test_status_lists_ledger_and_devices(service: FakeService) -> None:
    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 0
    assert "Ledger: /run/vfioswap.ledger (active)" in result.stdout
    assert "0000:01:00.0 originally nvidia" in result.stdout
    assert "0000:01:00.0: vfio-pci" in result.stdout
    assert "0000:01:00.1: <none>" in result.stdout
    assert "0000:02:00.0: <missing>" in result.stdout


def test_config_warnings_are_shown(service: FakeService, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        cli,
        "load_config",
        lambda path: LoadedConfig(config=SwapConfig(), source=None, warnings=("Config file x is a symlink.",)),
    )
    result = runner.invoke(cli.app, ["status"])
    assert "Warning: Config file x is a symlink." in result.output
