from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from fastapi import WebSocket

logger = logging.getLogger("ws")

DEVICES = "DEVICES"
ACTIVITY = "ACTIVITY"

Items = Callable[[], list[dict[str, Any]]]


def event(kind: str, items: list[dict[str, Any]]) -> dict[str, Any]:
    """``{"type": "DEVICES", "devices": [...]}`` and the like."""
    return {"type": kind, kind.lower(): items}


class WSManager:
    """Live feed of typed dashboard events.

    Each event kind has a source callable returning its current items. A
    change marks the kind dirty; one send per kind is scheduled on the loop,
    so a burst of changes reaches clients as the latest state only.
    """

    def __init__(self) -> None:
        self._clients: set[WebSocket] = set()
        self._sources: dict[str, Items] = {}
        self._scheduled: set[str] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def register(self, kind: str, source: Items) -> None:
        self._sources[kind] = source

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self._clients.add(ws)
        for kind, source in self._sources.items():
            await ws.send_json(event(kind, source()))

    def disconnect(self, ws: WebSocket) -> None:
        self._clients.discard(ws)

    def changed(self, kind: str) -> None:
        if not self._clients or kind in self._scheduled:
            return
        self._scheduled.add(kind)
        asyncio.get_running_loop().call_soon(self._send_latest, kind)

    def _send_latest(self, kind: str) -> None:
        self._scheduled.discard(kind)
        source = self._sources.get(kind)
        if source is None:
            return
        asyncio.get_running_loop().create_task(self.broadcast(event(kind, source())))

    async def broadcast(self, payload: dict[str, Any]) -> None:
        if not self._clients:
            return
        text = json.dumps(payload, ensure_ascii=False, default=str)
        stale: list[WebSocket] = []
        for ws in list(self._clients):
            try:
                await ws.send_text(text)
            except Exception:
                stale.append(ws)
        for ws in stale:
            logger.debug("Dropping stale websocket client")
            self._clients.discard(ws)
