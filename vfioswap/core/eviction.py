"""Reclaim a device from user-space processes holding its nodes."""

from __future__ import annotations

import logging
import re
import signal
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from vfioswap.core.errors import EvictionAbort
from vfioswap.core.model import EvictionReport, EvictionTarget, ExecutionContext, RetryPolicy
from vfioswap.core.retry import Sleep, wait_until
from vfioswap.host.base import ProcessControl

LOGGER = logging.getLogger(__name__)

DISPLAY_SERVER_RE = re.compile(r"Xorg|Xwayland|kwin|gnome-shell|sddm|gdm|mutter|weston|sway")
CONSENT_TIMEOUT_S = 30.0

Confirm = Callable[[str, float], bool]


class Selector(Enum):
    PID = "pid"
    NAME = "name"


@dataclass(frozen=True)
class EscalationStep:
    signum: int
    selector: Selector
    policy: RetryPolicy

    @property
    def label(self) -> str:
        return f"{signal.Signals(self.signum).name} by {self.selector.value}"


ESCALATION: tuple[EscalationStep, ...] = (
    EscalationStep(signal.SIGTERM, Selector.PID, RetryPolicy(attempts=5, interval=0.5)),
    # Supervisors (browsers, chat clients) respawn GPU children under new PIDs.
    EscalationStep(signal.SIGTERM, Selector.NAME, RetryPolicy(attempts=5, interval=0.5)),
    EscalationStep(signal.SIGKILL, Selector.NAME, RetryPolicy(attempts=3, interval=0.5)),
)


def _deny(_: str, __: float) -> bool:
    return False


class EvictionEngine:
    def __init__(
        self,
        processes: ProcessControl,
        *,
        confirm: Confirm = _deny,
        sleep: Sleep = time.sleep,
        escalation: tuple[EscalationStep, ...] = ESCALATION,
    ) -> None:
        self.processes = processes
        self.confirm = confirm
        self.sleep = sleep
        self.escalation = escalation

    def evict(self, nodes: Iterable[Path], context: ExecutionContext) -> EvictionReport:
        node_set = frozenset(nodes)
        if not node_set:
            LOGGER.info("No device nodes to check.")
            return EvictionReport(nodes=node_set, dry_run=context.dry_run)

        LOGGER.info("Checking for processes holding the device...")
        LOGGER.debug("Checking nodes: %s", " ".join(sorted(str(n) for n in node_set)))

        targets = self._targets(node_set)
        if not targets:
            LOGGER.info("Device is free. No processes detected.")
            return EvictionReport(nodes=node_set, dry_run=context.dry_run)

        names = sorted({target.name for target in targets})
        LOGGER.warning(
            "The following applications are holding the device: %s (PIDs: %s)",
            ", ".join(names),
            " ".join(str(t.pid) for t in targets),
        )

        display = [name for name in names if DISPLAY_SERVER_RE.search(name)]
        if display:
            raise EvictionAbort(
                f"Display server ({', '.join(display)}) is attached to this device. "
                "Aborting to prevent a session crash; make sure the desktop runs on another GPU."
            )

        if context.dry_run:
            LOGGER.info("[DRY-RUN] Would terminate %s and wait for the device to be released", ", ".join(names))
            return EvictionReport(nodes=node_set, targets=targets, dry_run=True)

        if context.require_consent and not self.confirm(
            f"Terminate {', '.join(names)} to proceed?", CONSENT_TIMEOUT_S
        ):
            raise EvictionAbort("Aborting at user request.")

        steps: list[str] = []
        for step in self.escalation:
            LOGGER.info("Sending %s", step.label)
            self._send(step, targets, names)
            steps.append(step.label)
            if wait_until(
                lambda: not self.processes.holders(node_set),
                step.policy,
                f"device release after {step.label}",
                sleep=self.sleep,
            ):
                LOGGER.info("Device is confirmed free.")
                return EvictionReport(nodes=node_set, targets=targets, steps=tuple(steps))
            LOGGER.warning("Processes still holding the device after %s", step.label)

        remaining = self._targets(node_set)
        listing = ", ".join(f"{t.pid} ({t.name})" for t in remaining) or "unknown"
        raise EvictionAbort(
            f"Device is still in use by: {listing}. A process likely respawned or is unkillable; "
            "aborting unbind to prevent a system hang."
        )

    def _targets(self, nodes: frozenset[Path]) -> tuple[EvictionTarget, ...]:
        targets: list[EvictionTarget] = []
        unnamed: list[int] = []
        for pid in sorted(self.processes.holders(nodes)):
            name = self.processes.process_name(pid)
            if name is None:
                unnamed.append(pid)
                continue
            targets.append(EvictionTarget(pid=pid, name=name))

        # A PID without a readable name either exited or cannot be inspected.
        hidden = sorted(set(unnamed) & self.processes.holders(nodes)) if unnamed else []
        if hidden:
            raise EvictionAbort(
                f"Device is held by processes that could not be identified (PIDs: "
                f"{' '.join(str(pid) for pid in hidden)}). Aborting unbind."
            )
        return tuple(targets)

    def _send(self, step: EscalationStep, targets: tuple[EvictionTarget, ...], names: list[str]) -> None:
        if step.selector is Selector.PID:
            for target in targets:
                LOGGER.debug("Signalling PID %d (%s)", target.pid, target.name)
                self.processes.signal_pid(target.pid, step.signum)
        else:
            for name in names:
                LOGGER.debug("Signalling all '%s' processes", name)
                self.processes.signal_name(name, step.signum)
