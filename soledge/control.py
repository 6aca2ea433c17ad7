from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .activity import CONTROL, CONTROL_ERROR, ActivityLog
from .devices import Device
from .errors import BusyError, UnknownDeviceError, WriteError
from .sync import SyncEngine

logger = logging.getLogger("control-loop")

DEFAULT_LOW_PRODUCTION_W = 60.0
DEFAULT_HIGH_CONSUMPTION_W = 80.0


@dataclass(frozen=True)
class PowerSample:
    production_w: float = 0.0
    consumption_w: float = 0.0


@dataclass(frozen=True)
class ControlDecision:
    enabled: bool
    production_w: float
    consumption_w: float
    total_consumption_w: float
    low_production: bool
    high_consumption: bool
    managed_on: tuple[str, ...]
    shutdown: bool
    reason: str


class ControlLoop:
    """Protective load shedding driven by the power balance.

    Re-evaluated whenever the sample, the enabled flag or the device list
    changes. When production is low and the managed devices that are on draw
    more than the threshold, every managed device is forced off in one group
    write. The loop never switches anything on.
    """

    def __init__(
        self,
        engine: SyncEngine,
        activity: ActivityLog | None = None,
        low_production_w: float = DEFAULT_LOW_PRODUCTION_W,
        high_consumption_w: float = DEFAULT_HIGH_CONSUMPTION_W,
        enabled: bool = False,
        sample: PowerSample | None = None,
    ) -> None:
        self._engine = engine
        self._activity = activity if activity is not None else engine.activity
        self.low_production_w = low_production_w
        self.high_consumption_w = high_consumption_w
        self._enabled = enabled
        self._sample = sample or PowerSample()
        self._task: asyncio.Task[None] | None = None
        self.last_decision: ControlDecision | None = None
        self.shutdown_count = 0
        self._remove_listener = engine.add_listener(self.evaluate)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def sample(self) -> PowerSample:
        return self._sample

    @property
    def busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def update(
        self,
        enabled: bool | None = None,
        production_w: float | None = None,
        consumption_w: float | None = None,
    ) -> ControlDecision:
        sample = PowerSample(
            production_w=self._sample.production_w if production_w is None else float(production_w),
            consumption_w=self._sample.consumption_w if consumption_w is None else float(consumption_w),
        )
        new_enabled = self._enabled if enabled is None else bool(enabled)
        if sample == self._sample and new_enabled == self._enabled:
            return self.last_decision or self.decide()
        if new_enabled != self._enabled:
            logger.info("Control loop %s", "enabled" if new_enabled else "disabled")
        self._sample = sample
        self._enabled = new_enabled
        return self.evaluate()

    def managed_devices(self) -> list[Device]:
        managed = set(self._engine.registry.managed_ids)
        return [d for d in self._engine.devices if d.id in managed]

    def decide(self) -> ControlDecision:
        managed = self.managed_devices()
        on = tuple(d.id for d in managed if d.is_on)
        total = sum(d.rated_power_w for d in managed if d.is_on)
        low = self._sample.production_w < self.low_production_w
        high = total > self.high_consumption_w

        if not self._enabled:
            shutdown, reason = False, "disabled"
        elif not (low and high):
            shutdown, reason = False, "balanced"
        elif not on:
            shutdown, reason = False, "nothing to shed"
        elif self.busy or any(self._engine.is_pending(d.id) for d in managed):
            shutdown, reason = False, "write pending"
        else:
            shutdown, reason = True, "low production with high consumption"

        return ControlDecision(
            enabled=self._enabled,
            production_w=self._sample.production_w,
            consumption_w=self._sample.consumption_w,
            total_consumption_w=total,
            low_production=low,
            high_consumption=high,
            managed_on=on,
            shutdown=shutdown,
            reason=reason,
        )

    def evaluate(self) -> ControlDecision:
        decision = self.decide()
        self.last_decision = decision
        if not decision.shutdown:
            return decision

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; shutdown skipped")
            return decision

        ids = [d.id for d in self.managed_devices()]
        self.shutdown_count += 1
        self._activity.append(
            CONTROL,
            f"Forced off {', '.join(ids)}: production {decision.production_w:.0f}W < {self.low_production_w:.0f}W, "
            f"load {decision.total_consumption_w:.0f}W > {self.high_consumption_w:.0f}W "
            f"(consumption {decision.consumption_w:.0f}W)",
        )
        logger.info("Shedding %s (production=%.1fW load=%.1fW)", ids, decision.production_w, decision.total_consumption_w)
        self._task = loop.create_task(self._shutdown(ids))
        return decision

    async def _shutdown(self, device_ids: list[str]) -> None:
        try:
            await self._engine.toggle_group(device_ids, target=False)
        except WriteError as exc:
            logger.error("Forced shutdown failed: %s", exc.message)
            self._activity.append(CONTROL_ERROR, f"Forced shutdown failed: {exc.message}")
        except (BusyError, UnknownDeviceError) as exc:
            logger.info("Forced shutdown skipped: %s", exc)

    async def wait_idle(self) -> None:
        if self._task is not None:
            await asyncio.shield(self._task)

    def close(self) -> None:
        self._remove_listener()
