from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from typing import Any

from .activity import WRITE_ERROR, ActivityLog
from .devices import OFFLINE, ONLINE, Device, DeviceRegistry, DeviceSummary
from .errors import BusyError, ConfigurationError, ConnectivityError, UnknownDeviceError, WriteError
from .store import KeyValueStore, join_key

logger = logging.getLogger("sync-engine")

Listener = Callable[[], None]


@dataclass(frozen=True)
class PendingWrite:
    key: str
    device_ids: tuple[str, ...]
    seq: int
    started_at: float


class SyncEngine:
    """Owns the local mirror of device state and every write back to the store.

    Snapshots only ever refresh ``is_on`` and ``online_status``; metadata comes
    from the registry. Toggles are optimistic: the local flip happens before
    the first suspension point, and is reverted if the store write fails.
    """

    def __init__(
        self,
        store: KeyValueStore,
        registry: DeviceRegistry,
        activity: ActivityLog | None = None,
        path: str = "",
        write_error_clear_seconds: float = 5.0,
    ) -> None:
        self._store = store
        self._registry = registry
        self._activity = activity if activity is not None else ActivityLog()
        self._path = path.strip("/")
        self._clear_delay = write_error_clear_seconds
        self._devices: dict[str, Device] = {}
        self._pending: dict[str, PendingWrite] = {}
        self._seq = itertools.count(1)
        self._listeners: list[Listener] = []
        self._clear_handle: asyncio.TimerHandle | None = None
        self.write_error: WriteError | None = None
        self.connectivity_error: ConnectivityError | None = None
        self.configuration_error: ConfigurationError | None = None

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    @property
    def activity(self) -> ActivityLog:
        return self._activity

    @property
    def devices(self) -> list[Device]:
        return [replace(d) for d in self._devices.values()]

    def get(self, device_id: str) -> Device | None:
        device = self._devices.get(device_id)
        return replace(device) if device is not None else None

    def summary(self) -> DeviceSummary:
        devices = list(self._devices.values())
        return DeviceSummary(
            total=len(devices),
            online=sum(1 for d in devices if d.online),
            active=sum(1 for d in devices if d.is_on),
            total_units_kwh=round(sum(d.nominal_consumption_kwh for d in devices), 1),
        )

    def is_pending(self, device_id: str) -> bool:
        return any(device_id in p.device_ids for p in self._pending.values())

    @property
    def pending_writes(self) -> list[PendingWrite]:
        return list(self._pending.values())

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("Device listener failed")

    # inbound

    def apply_snapshot(self, snapshot: Mapping[str, Any], full: bool = True) -> None:
        states = self._registry.recognized(snapshot)
        if not states:
            if self.configuration_error is None:
                logger.warning("Snapshot at %r has no recognized device keys", self._path or "/")
            self.configuration_error = ConfigurationError(
                f"no recognized devices at {self._path or '/'}; expected one of {', '.join(self._registry.allowed_ids)}"
            )
        else:
            self.configuration_error = None
        self.connectivity_error = None

        for device_id, is_on in states.items():
            device = self._devices.get(device_id)
            if device is None:
                self._devices[device_id] = self._registry.build(device_id, is_on)
                logger.info("Device %s discovered (on=%s)", device_id, is_on)
                continue
            device.online_status = ONLINE
            if self.is_pending(device_id):
                # snapshot may predate the in-flight write; keep the optimistic value
                continue
            device.is_on = is_on

        if full:
            for device_id in [d for d in self._devices if d not in states]:
                logger.info("Device %s pruned: absent from snapshot", device_id)
                del self._devices[device_id]
        self._notify()

    def mark_offline(self, error: ConnectivityError) -> None:
        self.connectivity_error = error
        for device in self._devices.values():
            device.online_status = OFFLINE
        self._notify()

    async def run(self) -> None:
        """Mirror the device path until cancelled."""
        async with self._store.subscribe(self._path) as subscription:
            while True:
                try:
                    snapshot = await subscription.next()
                except StopAsyncIteration:
                    return
                except ConnectivityError as exc:
                    logger.warning("Device subscription interrupted: %s", exc)
                    self.mark_offline(exc)
                    continue
                self.apply_snapshot(snapshot)

    # outbound

    async def toggle(self, device_id: str) -> Device | None:
        await self._write([device_id], target=None, key=device_id)
        return self.get(device_id)

    async def toggle_group(self, device_ids: Iterable[str], target: bool | None = None) -> list[Device]:
        ids = list(dict.fromkeys(device_ids))
        await self._write(ids, target=target, key="group:" + ",".join(sorted(ids)))
        return [replace(self._devices[i]) for i in ids if i in self._devices]

    async def _write(self, device_ids: list[str], target: bool | None, key: str) -> None:
        if not device_ids:
            return
        for device_id in device_ids:
            if device_id not in self._devices:
                raise UnknownDeviceError(device_id)
        busy = [i for i in device_ids if self.is_pending(i)]
        if busy:
            logger.debug("Write for %s ignored: pending", ", ".join(busy))
            raise BusyError(busy)

        previous = {i: self._devices[i].is_on for i in device_ids}
        desired = {i: (not previous[i]) if target is None else target for i in device_ids}
        pending = PendingWrite(key=key, device_ids=tuple(device_ids), seq=next(self._seq), started_at=time.monotonic())
        self._pending[key] = pending
        for device_id, is_on in desired.items():
            self._devices[device_id].is_on = is_on
        self._notify()

        writes = [
            self._store.set(join_key(self._path, i), self._registry.encode(desired[i])) for i in device_ids
        ]
        try:
            results = await asyncio.gather(*writes, return_exceptions=True)
        finally:
            self._pending.pop(key, None)

        failures = [r for r in results if isinstance(r, BaseException)]
        if not failures:
            logger.info("Write #%s for %s confirmed by store", pending.seq, ", ".join(device_ids))
            # listeners that deferred on the pending write re-evaluate now
            self._notify()
            return

        for device_id, was_on in previous.items():
            device = self._devices.get(device_id)
            if device is not None:
                device.is_on = was_on
        first = failures[0]
        message = first.message if isinstance(first, WriteError) else f"write failed: {first}"
        if len(device_ids) > 1:
            message = f"group write for {', '.join(device_ids)} failed ({len(failures)} of {len(device_ids)}): {message}"
        error = WriteError(message, device_ids)
        logger.warning("Write #%s reverted: %s", pending.seq, message)
        self._record_write_error(error)
        self._notify()
        raise error

    def _record_write_error(self, error: WriteError) -> None:
        self.write_error = error
        self._activity.append(WRITE_ERROR, error.message)
        if self._clear_handle is not None:
            self._clear_handle.cancel()
        loop = asyncio.get_running_loop()
        self._clear_handle = loop.call_later(self._clear_delay, self._clear_write_error, error)

    def _clear_write_error(self, error: WriteError) -> None:
        if self.write_error is error:
            self.write_error = None
        self._clear_handle = None
