from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _env(name: str, default: str) -> str:
    return os.getenv(name, default)


@dataclass(frozen=True)
class Settings:
    host: str = field(default_factory=lambda: _env("BACKEND_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(_env("BACKEND_PORT", "8000")))
    database_url: str = field(default_factory=lambda: _env("DATABASE_URL", "sqlite:///./soledge.db"))
    mqtt_enabled: bool = field(default_factory=lambda: _to_bool(os.getenv("MQTT_ENABLED"), False))
    mqtt_host: str = field(default_factory=lambda: _env("MQTT_HOST", "127.0.0.1"))
    mqtt_port: int = field(default_factory=lambda: int(_env("MQTT_PORT", "1883")))
    mqtt_username: str = field(default_factory=lambda: _env("MQTT_USERNAME", ""))
    mqtt_password: str = field(default_factory=lambda: _env("MQTT_PASSWORD", ""))
    mqtt_topic_prefix: str = field(
        default_factory=lambda: _env("MQTT_TOPIC_PREFIX", "soledge").strip("/") or "soledge"
    )
    devices_path: str = field(default_factory=lambda: _env("DEVICES_PATH", "").strip("/"))
    sensor_path: str = field(default_factory=lambda: _env("SENSOR_PATH", "sensorData").strip("/"))
    device_encoding: str = field(default_factory=lambda: _env("DEVICE_ENCODING", "direct").strip().lower())
    control_enabled: bool = field(default_factory=lambda: _to_bool(os.getenv("CONTROL_ENABLED"), False))
    low_production_w: float = field(default_factory=lambda: _to_float(os.getenv("LOW_PRODUCTION_W"), 60.0))
    high_consumption_w: float = field(default_factory=lambda: _to_float(os.getenv("HIGH_CONSUMPTION_W"), 80.0))
    write_error_clear_seconds: float = field(
        default_factory=lambda: _to_float(os.getenv("WRITE_ERROR_CLEAR_SECONDS"), 5.0)
    )
    store_timeout_seconds: float = field(default_factory=lambda: _to_float(os.getenv("STORE_TIMEOUT_SECONDS"), 10.0))
    predictor_address: str = field(default_factory=lambda: _env("PREDICTOR_ADDRESS", "").strip())
    predictor_timeout_seconds: float = field(
        default_factory=lambda: _to_float(os.getenv("PREDICTOR_TIMEOUT_SECONDS"), 15.0)
    )
    prediction_interval_seconds: float = field(
        default_factory=lambda: _to_float(os.getenv("PREDICTION_INTERVAL_SECONDS"), 600.0)
    )


def get_settings() -> Settings:
    return Settings()


