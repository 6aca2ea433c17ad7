from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

import httpx

from .activity import CONFIG, USER, ActivityLog
from .config import Settings
from .control import ControlLoop
from .db import Database
from .devices import DEFAULT_CATALOG, Device, DeviceRegistry, DeviceSpec
from .mqtt_store import MqttStore
from .preferences import PreferenceStore
from .prediction import PredictionClient
from .store import KeyValueStore, MemoryStore, join_key
from .sync import SyncEngine
from .telemetry import TelemetryMonitor

logger = logging.getLogger("soledge")


def build_store(settings: Settings, registry: DeviceRegistry) -> KeyValueStore:
    if settings.mqtt_enabled:
        return MqttStore(settings)
    logger.info("MQTT disabled via MQTT_ENABLED=0; using in-memory store")
    return MemoryStore({join_key(settings.devices_path, i): registry.encode(False) for i in registry.allowed_ids})


class Dashboard:
    """Process-scoped wiring of store, sync engine, control loop and telemetry.

    Everything is built from the injected settings; ``start`` opens the
    subscriptions and ``stop`` releases them.
    """

    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore | None = None,
        database: Database | None = None,
        catalog: Iterable[DeviceSpec] = DEFAULT_CATALOG,
        predictor_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.registry = DeviceRegistry(catalog, settings.device_encoding)
        self.store = store if store is not None else build_store(settings, self.registry)
        self.database = database or Database(settings.database_url)
        self.preferences = PreferenceStore(self.database)
        self.activity = ActivityLog()
        self.engine = SyncEngine(
            self.store,
            self.registry,
            self.activity,
            path=settings.devices_path,
            write_error_clear_seconds=settings.write_error_clear_seconds,
        )
        self.control = ControlLoop(
            self.engine,
            self.activity,
            low_production_w=settings.low_production_w,
            high_consumption_w=settings.high_consumption_w,
            enabled=settings.control_enabled,
        )
        self.predictor = PredictionClient(
            settings.predictor_address,
            timeout=settings.predictor_timeout_seconds,
            transport=predictor_transport,
        )
        self.telemetry = TelemetryMonitor(
            self.store,
            self.control,
            self.predictor,
            path=settings.sensor_path,
            interval=settings.prediction_interval_seconds,
        )
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def start(self) -> None:
        self.database.create_all()
        self.predictor.address = self.preferences.load_predictor_address(self.settings.predictor_address)
        if isinstance(self.store, MqttStore):
            self.store.start(asyncio.get_running_loop())
        self._tasks = [
            asyncio.create_task(self.engine.run(), name="device-sync"),
            asyncio.create_task(self.telemetry.run(), name="telemetry"),
        ]
        logger.info(
            "Dashboard started: devices=%s encoding=%s control=%s",
            ",".join(self.registry.allowed_ids),
            self.registry.encoding.value,
            "on" if self.control.enabled else "off",
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.control.close()
        if isinstance(self.store, MqttStore):
            self.store.stop()
        self.database.dispose()
        logger.info("Dashboard stopped")

    async def toggle(self, device_id: str) -> Device | None:
        device = await self.engine.toggle(device_id)
        if device is not None:
            self.activity.append(USER, f"{device.display_name} switched {'on' if device.is_on else 'off'}")
        return device

    async def toggle_group(self, device_ids: list[str], target: bool | None = None) -> list[Device]:
        devices = await self.engine.toggle_group(device_ids, target=target)
        verb = "toggled" if target is None else ("switched on" if target else "switched off")
        self.activity.append(USER, f"{', '.join(d.display_name for d in devices)} {verb}")
        return devices

    def set_predictor_address(self, address: str) -> str:
        address = self.preferences.save_predictor_address(address)
        self.predictor.address = address
        self.activity.append(CONFIG, f"Predictor address set to {address or '(none)'}")
        return address
