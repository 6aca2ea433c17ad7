from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from .errors import ConnectivityError, WriteError

logger = logging.getLogger("store")

Snapshot = dict[str, Any]

_CLOSED = object()


def split_key(key: str) -> tuple[str, str]:
    """Split ``"path/leaf"`` into its parent path and leaf; root keys have path ``""``."""
    path, _, leaf = key.strip("/").rpartition("/")
    return path, leaf


def join_key(path: str, leaf: str) -> str:
    path = path.strip("/")
    return f"{path}/{leaf}" if path else leaf


class Subscription:
    """Cancellable stream of full snapshots for one path.

    Items are handed in with ``push`` (snapshots) or ``push_error`` (transport
    loss). A transport error is raised from the next read, after which the
    stream keeps delivering. ``close`` ends the stream and detaches it from its
    store; leaving ``async with`` always closes it.
    """

    def __init__(self, path: str, on_close: Callable[[Subscription], None] | None = None) -> None:
        self.path = path.strip("/")
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, snapshot: Snapshot) -> None:
        if not self._closed:
            self._queue.put_nowait(dict(snapshot))

    def push_error(self, error: ConnectivityError) -> None:
        if not self._closed:
            self._queue.put_nowait(error)

    async def next(self) -> Snapshot:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, ConnectivityError):
            raise item
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Snapshot:
        return await self.next()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()


class KeyValueStore(Protocol):
    def subscribe(self, path: str) -> Subscription: ...

    async def get(self, path: str) -> Snapshot: ...

    async def set(self, key: str, value: Any) -> None: ...


class MemoryStore:
    """In-process store used for simulation and tests.

    Writes can be made to fail per key (``fail_keys``) or held back until
    ``gate`` is set, so callers can observe in-flight state.
    """

    def __init__(self, initial: dict[str, Any] | None = None, write_delay: float = 0.0) -> None:
        self._data: dict[str, Any] = {}
        for key, value in (initial or {}).items():
            self._data[key.strip("/")] = value
        self._subscriptions: set[Subscription] = set()
        self.write_delay = write_delay
        self.fail_keys: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.writes: list[tuple[str, Any]] = []
        self.connected = True

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def snapshot(self, path: str) -> Snapshot:
        path = path.strip("/")
        out: Snapshot = {}
        for key, value in self._data.items():
            parent, leaf = split_key(key)
            if parent == path:
                out[leaf] = value
        return out

    def subscribe(self, path: str) -> Subscription:
        sub = Subscription(path, on_close=self._subscriptions.discard)
        self._subscriptions.add(sub)
        if self.connected:
            sub.push(self.snapshot(sub.path))
        return sub

    async def get(self, path: str) -> Snapshot:
        if not self.connected:
            raise ConnectivityError("store is unreachable")
        return self.snapshot(path)

    async def set(self, key: str, value: Any) -> None:
        key = key.strip("/")
        if self.gate is not None:
            await self.gate.wait()
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        if not self.connected:
            raise WriteError(f"write to {key} failed: store is unreachable", [split_key(key)[1]])
        if key in self.fail_keys:
            raise WriteError(f"write to {key} rejected: permission denied", [split_key(key)[1]])
        self.writes.append((key, value))
        self.put(key, value)

    def put(self, key: str, value: Any) -> None:
        """Apply a write from another client and notify subscribers."""
        key = key.strip("/")
        self._data[key] = value
        self._publish(split_key(key)[0])

    def remove(self, key: str) -> None:
        key = key.strip("/")
        if self._data.pop(key, None) is not None:
            self._publish(split_key(key)[0])

    def disconnect(self) -> None:
        self.connected = False
        for sub in list(self._subscriptions):
            sub.push_error(ConnectivityError("store connection lost"))

    def reconnect(self) -> None:
        self.connected = True
        for sub in list(self._subscriptions):
            sub.push(self.snapshot(sub.path))

    def _publish(self, path: str) -> None:
        if not self.connected:
            return
        for sub in list(self._subscriptions):
            if sub.path == path:
                sub.push(self.snapshot(path))
