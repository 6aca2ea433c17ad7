from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from .activity import ControlEvent
from .control import ControlDecision
from .devices import Device, DeviceSummary


class DeviceOut(BaseModel):
    id: str
    name: str
    room: str
    ratedPowerW: float
    nominalConsumptionKWh: float
    isOn: bool
    status: str
    pending: bool = False

    @classmethod
    def from_device(cls, device: Device, pending: bool = False) -> DeviceOut:
        return cls(
            id=device.id,
            name=device.display_name,
            room=device.room,
            ratedPowerW=device.rated_power_w,
            nominalConsumptionKWh=device.nominal_consumption_kwh,
            isOn=device.is_on,
            status=device.online_status,
            pending=pending,
        )


class SummaryOut(BaseModel):
    totalDevices: int
    onlineDevices: int
    activeDevices: int
    totalUnitsKWh: float

    @classmethod
    def from_summary(cls, summary: DeviceSummary) -> SummaryOut:
        return cls(
            totalDevices=summary.total,
            onlineDevices=summary.online,
            activeDevices=summary.active,
            totalUnitsKWh=summary.total_units_kwh,
        )


class ToggleGroupRequest(BaseModel):
    deviceIds: list[str] = Field(min_length=1)
    target: bool | None = None


class ControlUpdateRequest(BaseModel):
    enabled: bool | None = None
    productionW: float | None = Field(default=None, ge=0, le=200)
    consumptionW: float | None = Field(default=None, ge=0, le=200)


class ControlStateOut(BaseModel):
    enabled: bool
    productionW: float
    consumptionW: float
    totalConsumptionW: float
    lowProductionThresholdW: float
    highConsumptionThresholdW: float
    lowProduction: bool
    highConsumption: bool
    lastDecision: str | None = None


class ActivityEntryOut(BaseModel):
    ts: datetime
    kind: str
    message: str

    @classmethod
    def from_event(cls, event: ControlEvent) -> ActivityEntryOut:
        return cls(ts=event.timestamp, kind=event.kind, message=event.message)


class PredictorConfig(BaseModel):
    address: str = Field(default="", max_length=255)


class StatusOut(BaseModel):
    connectivityError: str | None = None
    writeError: str | None = None
    configurationError: str | None = None
    predictionError: str | None = None
    temperature: float | None = None
    humidity: float | None = None
    predictedConsumptionKWh: float | None = None


def control_state(decision: ControlDecision, low_w: float, high_w: float) -> ControlStateOut:
    return ControlStateOut(
        enabled=decision.enabled,
        productionW=decision.production_w,
        consumptionW=decision.consumption_w,
        totalConsumptionW=decision.total_consumption_w,
        lowProductionThresholdW=low_w,
        highConsumptionThresholdW=high_w,
        lowProduction=decision.low_production,
        highConsumption=decision.high_consumption,
        lastDecision=decision.reason,
    )
