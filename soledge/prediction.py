from __future__ import annotations

import logging
from typing import Any

import httpx

from .errors import PredictionError

logger = logging.getLogger("predictor")


def bounds_for(temperature: float) -> tuple[float, float]:
    """(min_temp, max_temp) window sent to the predictor for a reading."""
    return round(temperature - 5, 1), round(temperature + 3, 1)


class PredictionClient:
    def __init__(self, address: str = "", timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.address = address.strip()
        self._timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.address)

    def url(self) -> str:
        return f"http://{self.address}/minimumtemp"

    async def predict(self, min_temp: float, max_temp: float) -> float:
        if not self.address:
            raise PredictionError("No predictor address configured")
        body: dict[str, Any] = {"max_temp": max_temp, "min_temp": min_temp}
        logger.debug("POST %s %s", self.url(), body)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                r = await client.post(self.url(), json=body)
        except httpx.RequestError as exc:
            raise PredictionError(f"Cannot reach predictor at {self.address}: {exc}") from exc

        if r.status_code >= 400:
            raise PredictionError(f"HTTP {r.status_code} - {r.text or r.reason_phrase}")
        try:
            data = r.json()
        except ValueError as exc:
            raise PredictionError("Invalid response format from predictor") from exc

        value = data.get("predicted_consumption_kwh") if isinstance(data, dict) else None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise PredictionError("Invalid response format from predictor")
        return float(value)

    async def predict_for(self, temperature: float) -> float:
        min_temp, max_temp = bounds_for(temperature)
        return await self.predict(min_temp, max_temp)
