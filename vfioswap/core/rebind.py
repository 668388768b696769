"""Driver rebind state machine for a single PCI device."""

from __future__ import annotations

import logging
import time

from vfioswap.core.errors import RebindFailure
from vfioswap.core.model import Direction, ExecutionContext, RebindResult, RetryPolicy
from vfioswap.core.retry import Sleep, wait_until
from vfioswap.host.base import PciBus

LOGGER = logging.getLogger(__name__)

UNBIND_POLICY = RetryPolicy(attempts=5, interval=0.2)


class RebindEngine:
    def __init__(self, bus: PciBus, *, sleep: Sleep = time.sleep) -> None:
        self.bus = bus
        self.sleep = sleep

    def transfer(
        self,
        device_id: str,
        target: str,
        direction: Direction,
        context: ExecutionContext,
    ) -> RebindResult:
        """Move ``device_id`` onto ``target``.

        Raises:
            RebindFailure: if the device is missing, a control write fails, or
                the device ends up without an acceptable driver.
        """
        if not self.bus.exists(device_id):
            raise RebindFailure(device_id, f"Device {device_id} not found.")

        current = self.bus.current_driver(device_id)
        if current == target:
            LOGGER.info("%s is already bound to %s.", device_id, target)
            return RebindResult(device_id=device_id, requested=target, driver=current, changed=False)

        self.unbind(device_id, target, context)
        if direction is Direction.TO_ISOLATION:
            self.set_override(device_id, target, context)
        else:
            self.clear_override(device_id, context)
        bound = self.bind(device_id, target, direction, context)
        return RebindResult(
            device_id=device_id,
            requested=target,
            driver=bound,
            dry_run=context.dry_run,
        )

    def unbind(self, device_id: str, target: str, context: ExecutionContext) -> bool:
        current = self.bus.current_driver(device_id)
        if current is None or current == target:
            return True

        LOGGER.info("Unbinding %s from %s...", device_id, current)
        if context.dry_run:
            LOGGER.info("[DRY-RUN] Would unbind %s from %s", device_id, current)
            return True

        try:
            self.bus.unbind(device_id)
        except OSError as exc:
            raise RebindFailure(
                device_id,
                f"Failed to unbind {device_id} from {current}: {exc}. Is the device still in use?",
            ) from exc

        # A late unbind is surfaced by the bind check that follows.
        return wait_until(
            lambda: self.bus.current_driver(device_id) is None,
            UNBIND_POLICY,
            f"{device_id} to unbind from {current}",
            sleep=self.sleep,
        )

    def clear_override(self, device_id: str, context: ExecutionContext) -> None:
        if context.dry_run:
            LOGGER.debug("[DRY-RUN] Would clear driver_override for %s", device_id)
            return
        try:
            self.bus.set_driver_override(device_id, "")
        except OSError as exc:
            LOGGER.warning("Failed to clear driver_override for %s: %s", device_id, exc)

    def set_override(self, device_id: str, driver: str, context: ExecutionContext) -> None:
        if context.dry_run:
            LOGGER.debug("[DRY-RUN] Would set driver_override for %s to %s", device_id, driver)
            return
        try:
            self.bus.set_driver_override(device_id, driver)
        except OSError as exc:
            raise RebindFailure(device_id, f"Failed to set driver_override for {device_id}: {exc}") from exc

    def bind(
        self,
        device_id: str,
        target: str,
        direction: Direction,
        context: ExecutionContext,
    ) -> str | None:
        LOGGER.info("Binding %s to %s...", device_id, target)
        if context.dry_run:
            LOGGER.info("[DRY-RUN] Would bind %s to %s", device_id, target)
            return target

        try:
            self.bus.bind(target, device_id)
        except OSError as exc:
            LOGGER.warning("Direct bind of %s to %s failed (%s), trying drivers_probe...", device_id, target, exc)
            try:
                self.bus.probe(device_id)
            except OSError as probe_exc:
                LOGGER.error("drivers_probe failed for %s: %s", device_id, probe_exc)

        if not wait_until(
            lambda: self.bus.current_driver(device_id) is not None,
            direction.bind_policy,
            f"{device_id} to bind",
            sleep=self.sleep,
        ):
            raise RebindFailure(device_id, f"Device {device_id} has no driver after rebind attempt.")

        bound = self.bus.current_driver(device_id)
        if bound == target:
            LOGGER.info("Success: %s is using %s.", device_id, target)
            return bound

        if direction is Direction.TO_ISOLATION:
            raise RebindFailure(
                device_id,
                f"{device_id} bound to {bound} instead of {target}.",
            )
        LOGGER.warning("%s bound to %s instead of %s.", device_id, bound, target)
        return bound
