from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import ConfigurationError

logger = logging.getLogger("device-registry")

ONLINE = "online"
OFFLINE = "offline"


class Encoding(str, enum.Enum):
    DIRECT = "direct"  # 1 = on
    INVERTED = "inverted"  # 0 = on

    @classmethod
    def parse(cls, value: str | Encoding) -> Encoding:
        if isinstance(value, Encoding):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"device encoding must be 'direct' or 'inverted', got {value!r}"
            ) from None

    def decode(self, raw: int | float) -> bool:
        on = int(raw) == 1
        return on if self is Encoding.DIRECT else not on

    def encode(self, is_on: bool) -> int:
        if self is Encoding.DIRECT:
            return 1 if is_on else 0
        return 0 if is_on else 1


@dataclass(frozen=True)
class DeviceSpec:
    id: str
    display_name: str
    room: str
    rated_power_w: float
    nominal_consumption_kwh: float
    managed: bool = True


@dataclass
class Device:
    id: str
    display_name: str
    room: str
    rated_power_w: float
    nominal_consumption_kwh: float
    is_on: bool
    online_status: str = ONLINE

    @property
    def online(self) -> bool:
        return self.online_status == ONLINE


@dataclass(frozen=True)
class DeviceSummary:
    total: int
    online: int
    active: int
    total_units_kwh: float


DEFAULT_CATALOG: tuple[DeviceSpec, ...] = (
    DeviceSpec(id="Fan", display_name="Ceiling Fan", room="Bedroom", rated_power_w=75.0, nominal_consumption_kwh=1.8),
    DeviceSpec(id="Light", display_name="LED Light", room="Living Room", rated_power_w=40.0, nominal_consumption_kwh=0.9),
)


def is_valid_raw(value: Any) -> bool:
    # bool is an int subclass; true/false are not part of the key space
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value in (0, 1)


class DeviceRegistry:
    """Turns raw store snapshots into typed devices.

    Only keys from the catalog are recognized. Values must be numeric 0 or 1;
    anything else is dropped silently. Metadata always comes from the catalog.
    """

    def __init__(self, catalog: Iterable[DeviceSpec] = DEFAULT_CATALOG, encoding: str | Encoding = Encoding.DIRECT) -> None:
        self._catalog: dict[str, DeviceSpec] = {spec.id: spec for spec in catalog}
        if not self._catalog:
            raise ConfigurationError("device catalog is empty")
        self._encoding = Encoding.parse(encoding)

    @property
    def encoding(self) -> Encoding:
        return self._encoding

    @property
    def allowed_ids(self) -> tuple[str, ...]:
        return tuple(self._catalog)

    @property
    def managed_ids(self) -> tuple[str, ...]:
        return tuple(spec.id for spec in self._catalog.values() if spec.managed)

    def spec(self, device_id: str) -> DeviceSpec | None:
        return self._catalog.get(device_id)

    def recognized(self, snapshot: Mapping[str, Any]) -> dict[str, bool]:
        """Map of allow-listed id -> decoded is_on for the valid entries of a snapshot."""
        states: dict[str, bool] = {}
        for key, raw in snapshot.items():
            if key not in self._catalog:
                continue
            if not is_valid_raw(raw):
                logger.debug("Ignoring %s: invalid raw value %r", key, raw)
                continue
            states[key] = self._encoding.decode(raw)
        return states

    def decode(self, snapshot: Mapping[str, Any]) -> list[Device]:
        return [self.build(device_id, is_on) for device_id, is_on in self.recognized(snapshot).items()]

    def build(self, device_id: str, is_on: bool, online_status: str = ONLINE) -> Device:
        spec = self._catalog[device_id]
        return Device(
            id=spec.id,
            display_name=spec.display_name,
            room=spec.room,
            rated_power_w=spec.rated_power_w,
            nominal_consumption_kwh=spec.nominal_consumption_kwh,
            is_on=is_on,
            online_status=online_status,
        )

    def encode(self, is_on: bool) -> int:
        return self._encoding.encode(is_on)
