"""Shared fixtures for the sync/control test suite.

Everything runs against the in-memory store; no broker or network needed.
"""

from __future__ import annotations

import logging

import pytest

from soledge.activity import ActivityLog
from soledge.config import Settings
from soledge.control import ControlLoop
from soledge.devices import DeviceRegistry, Encoding
from soledge.store import MemoryStore
from soledge.sync import SyncEngine

logging.getLogger("soledge").setLevel(logging.WARNING)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        mqtt_enabled=False,
        devices_path="",
        sensor_path="sensorData",
        device_encoding="direct",
        control_enabled=False,
        predictor_address="",
        write_error_clear_seconds=5.0,
    )


@pytest.fixture()
def registry() -> DeviceRegistry:
    return DeviceRegistry(encoding=Encoding.DIRECT)


@pytest.fixture()
def store() -> MemoryStore:
    """Fan and Light both on (direct encoding)."""
    return MemoryStore({"Fan": 1, "Light": 1})


@pytest.fixture()
def activity() -> ActivityLog:
    return ActivityLog()


@pytest.fixture()
def engine(store, registry, activity) -> SyncEngine:
    engine = SyncEngine(store, registry, activity, write_error_clear_seconds=0.05)
    engine.apply_snapshot(store.snapshot(""))
    return engine


@pytest.fixture()
def control(engine, activity) -> ControlLoop:
    loop = ControlLoop(engine, activity, low_production_w=60, high_consumption_w=80)
    yield loop
    loop.close()
