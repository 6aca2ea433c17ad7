from __future__ import annotations

import argparse
import asyncio
import math
import random
import time
from typing import Any

from soledge.config import get_settings
from soledge.errors import WriteError
from soledge.mqtt_store import MqttStore
from soledge.store import join_key


def make_sensors(tick: int) -> dict[str, Any]:
    # one "day" every 240 ticks; production follows a clipped sine
    phase = (tick % 240) / 240.0
    production = max(200.0 * math.sin(math.pi * phase), 0.0)
    return {
        "temperature": round(27.0 + 4.0 * math.sin(tick / 30.0), 1),
        "humidity": round(60.0 + 15.0 * math.cos(tick / 45.0)),
        "production_w": round(production, 1),
    }


async def run(interval: float, duration: float, flip_chance: float, device_keys: list[str]) -> None:
    settings = get_settings()
    store = MqttStore(settings)
    store.start(asyncio.get_running_loop())
    start = time.time()
    tick = 0
    print(f"[sim] start broker={settings.mqtt_host}:{settings.mqtt_port} interval={interval}s duration={duration}s")
    try:
        while True:
            if not store.connected:
                await asyncio.sleep(interval)
                continue
            sensors = make_sensors(tick)
            for key, value in sensors.items():
                await store.set(join_key(settings.sensor_path, key), value)

            flipped = ""
            if device_keys and random.random() < flip_chance:
                key = random.choice(device_keys)
                value = random.choice((0, 1))
                try:
                    await store.set(join_key(settings.devices_path, key), value)
                    flipped = f" {key}={value}"
                except WriteError as exc:
                    print(f"[sim] write failed: {exc}")

            print(
                f"[sim] tick={tick} temp={sensors['temperature']}C production={sensors['production_w']}W"
                + flipped
            )
            tick += 1
            if duration > 0 and (time.time() - start) >= duration:
                print("[sim] done")
                return
            await asyncio.sleep(interval)
    finally:
        store.stop()


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive sensor and device keys on the MQTT store without hardware.")
    parser.add_argument("--interval", type=float, default=1.0, help="Write interval in seconds.")
    parser.add_argument("--duration", type=float, default=0.0, help="Run duration seconds (0 means forever).")
    parser.add_argument("--flip-chance", type=float, default=0.05, help="Chance per tick to flip a device key.")
    parser.add_argument("--devices", default="Fan,Light", help="Comma separated device keys to flip.")
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    asyncio.run(
        run(
            interval=max(args.interval, 0.2),
            duration=max(args.duration, 0.0),
            flip_chance=min(max(args.flip_chance, 0.0), 1.0),
            device_keys=[k.strip() for k in args.devices.split(",") if k.strip()],
        )
    )
