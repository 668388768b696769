"""Typer CLI entrypoint."""

from __future__ import annotations

import signal
from pathlib import Path

import typer

from vfioswap.core.config_loader import load_config
from vfioswap.core.errors import VfioSwapError
from vfioswap.core.model import ExecutionContext
from vfioswap.core.service import SwapService
from vfioswap.logsetup import configure_logging

app = typer.Typer(help="Hand PCI devices between host drivers and vfio-pci for VM passthrough")

_DRY_RUN = typer.Option(False, "--dry-run", "-n", help="Show what would be done without making changes")
_VERBOSE = typer.Option(False, "--verbose", "-v", help="Enable debug output")
_SYSLOG = typer.Option(False, "--syslog", "-l", help="Also log to the system log")
_FORCE = typer.Option(False, "--force", "-f", help="Proceed despite ledger state")
_CONFIG = typer.Option(None, "--config", "-c", help="Config file (default: discovered)")


def _terminate(signum: int, _frame: object) -> None:
    raise SystemExit(128 + signum)


def _build_service(config_path: Path | None) -> SwapService:
    loaded = load_config(config_path)
    for warning in loaded.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return SwapService(loaded.config)


@app.command("acquire")
def acquire(
    devices: list[str] | None = typer.Argument(None, help="PCI IDs to isolate, in rebind order"),
    gpu: str | None = typer.Option(None, "--gpu", "-g", help="GPU PCI ID"),
    audio: str | None = typer.Option(None, "--audio", "-a", help="GPU audio function PCI ID"),
    dry_run: bool = _DRY_RUN,
    verbose: bool = _VERBOSE,
    syslog: bool = _SYSLOG,
    force: bool = _FORCE,
    yes: bool = typer.Option(False, "--yes", "-y", help="Terminate device holders without asking"),
    restart_companion: bool = typer.Option(
        False, "--restart-companion", help="Restart the vendor companion service afterwards"
    ),
    config: Path | None = _CONFIG,
) -> None:
    """Unbind devices from their host drivers and bind them to the isolation driver."""
    configure_logging(verbose=verbose, syslog=syslog)
    signal.signal(signal.SIGTERM, _terminate)
    context = ExecutionContext(dry_run=dry_run, verbose=verbose, force=force, require_consent=not yes)

    specs = list(devices or [])
    # Audio function is rebound before the GPU.
    specs += [spec for spec in (audio, gpu) if spec]
    try:
        service = _build_service(config)
        report = service.acquire_for_isolation(specs or None, context, restart_companion=restart_companion)
        for result in report.rebinds:
            state = "unchanged" if not result.changed else result.driver
            typer.echo(f"{result.device_id} -> {state}")
        for handle in report.handles:
            typer.echo(f"granted {handle}")
        if report.dry_run:
            typer.echo("Dry run complete; nothing was changed.")
        else:
            typer.echo("Devices ready for VM passthrough.")
    except VfioSwapError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        typer.echo("Interrupted.", err=True)
        raise typer.Exit(code=130) from None


@app.command("release")
def release(
    dry_run: bool = _DRY_RUN,
    verbose: bool = _VERBOSE,
    syslog: bool = _SYSLOG,
    force: bool = _FORCE,
    no_companion_restart: bool = typer.Option(
        False, "--no-companion-restart", help="Skip the vendor companion service restart"
    ),
    config: Path | None = _CONFIG,
) -> None:
    """Return every device recorded in the ledger to its original driver."""
    configure_logging(verbose=verbose, syslog=syslog)
    signal.signal(signal.SIGTERM, _terminate)
    context = ExecutionContext(dry_run=dry_run, verbose=verbose, force=force)
    try:
        service = _build_service(config)
        report = service.release_to_host(
            context,
            restart_companion=False if no_companion_restart else None,
        )
        for result in report.restored:
            typer.echo(f"{result.device_id} -> {result.driver}")
        for failure in report.failures:
            typer.echo(f"Failed: {failure.device_id} ({failure.driver}): {failure.reason}", err=True)
        if report.failures:
            raise typer.Exit(code=int(report.exit_status))
    except VfioSwapError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        typer.echo("Interrupted.", err=True)
        raise typer.Exit(code=130) from None


@app.command("status")
def status(
    verbose: bool = _VERBOSE,
    config: Path | None = _CONFIG,
) -> None:
    """Show the ledger and the live driver of each known device."""
    configure_logging(verbose=verbose)
    try:
        service = _build_service(config)
        report = service.status()
        state = "active" if report.active else "inactive"
        typer.echo(f"Ledger: {report.ledger_path} ({state})")
        for record in report.records:
            typer.echo(f"  {record.device_id} originally {record.driver}")
        for device in report.devices:
            driver = (device.driver or "<none>") if device.present else "<missing>"
            typer.echo(f"{device.device_id}: {driver}")
    except VfioSwapError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
