from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from .control import ControlLoop
from .errors import ConnectivityError, PredictionError
from .prediction import PredictionClient
from .store import KeyValueStore

logger = logging.getLogger("telemetry")


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class TelemetryMonitor:
    """Feeds sensor readings and predicted consumption into the control loop.

    A new prediction is requested when the temperature changes, and otherwise
    at most once per ``interval`` seconds.
    """

    def __init__(
        self,
        store: KeyValueStore,
        control: ControlLoop,
        predictor: PredictionClient,
        path: str = "sensorData",
        interval: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._control = control
        self.predictor = predictor
        self._path = path.strip("/")
        self._interval = interval
        self._clock = clock
        self._last_request_at: float | None = None
        self._last_request_temp: float | None = None
        self.temperature: float | None = None
        self.humidity: float | None = None
        self.production_w: float | None = None
        self.predicted_consumption_kwh: float | None = None
        self.prediction_error: PredictionError | None = None
        self.connectivity_error: ConnectivityError | None = None

    def apply_snapshot(self, snapshot: Mapping[str, Any]) -> None:
        self.connectivity_error = None
        temperature = _number(snapshot.get("temperature"))
        if temperature is not None:
            self.temperature = temperature
        humidity = _number(snapshot.get("humidity"))
        if humidity is not None:
            self.humidity = humidity
        production = _number(snapshot.get("production_w"))
        if production is not None and production != self.production_w:
            self.production_w = production
            self._control.update(production_w=production)

    def prediction_due(self) -> bool:
        if self.temperature is None or not self.predictor.configured:
            return False
        if self._last_request_at is None or self.temperature != self._last_request_temp:
            return True
        return self._clock() - self._last_request_at >= self._interval

    async def refresh_prediction(self) -> float | None:
        if self.temperature is None:
            return None
        self._last_request_at = self._clock()
        self._last_request_temp = self.temperature
        try:
            kwh = await self.predictor.predict_for(self.temperature)
        except PredictionError as exc:
            logger.warning("Prediction failed: %s", exc)
            self.prediction_error = exc
            return None
        self.prediction_error = None
        self.predicted_consumption_kwh = kwh
        logger.info("Predicted consumption %.2f kWh at %.1f C", kwh, self.temperature)
        # kWh over the next hour as an average draw in watts
        self._control.update(consumption_w=kwh * 1000)
        return kwh

    def _wait_timeout(self) -> float | None:
        if self._last_request_at is None or not self.predictor.configured:
            return None
        return max(self._interval - (self._clock() - self._last_request_at), 0.0)

    async def run(self) -> None:
        async with self._store.subscribe(self._path) as subscription:
            while True:
                try:
                    snapshot = await asyncio.wait_for(subscription.next(), timeout=self._wait_timeout())
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    snapshot = None
                except ConnectivityError as exc:
                    logger.warning("Sensor subscription interrupted: %s", exc)
                    self.connectivity_error = exc
                    continue
                if snapshot is not None:
                    self.apply_snapshot(snapshot)
                if self.prediction_due():
                    await self.refresh_prediction()
