from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any

from fastapi import WebSocket

from ..types import AccessChange

logger = logging.getLogger("site_access.ws")


def site_channel(site_id: str) -> str:
    return f"site:{site_id}"


def change_message(change: AccessChange) -> dict[str, Any]:
    return {
        "type": "access_change",
        "payload": {
            "site_id": change.site_id,
            "kind": change.kind.value,
            "session_id": change.session_id,
            "person_id": change.person_id,
            "occurred_at": change.occurred_at.isoformat(),
        },
    }


class ConnectionManager:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, channel: str) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections[channel].add(websocket)

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            for channel in list(self._connections.keys()):
                self._connections[channel].discard(websocket)
                if not self._connections[channel]:
                    del self._connections[channel]

    async def broadcast(self, message: dict[str, Any], channel: str) -> None:
        async with self._lock:
            targets = list(self._connections.get(channel, set()))
        stale: list[WebSocket] = []
        for ws in targets:
            try:
                await ws.send_json(message)
            except Exception:
                stale.append(ws)
        if stale:
            logger.info("Dropping %d stale websocket(s) from %s", len(stale), channel)
        for ws in stale:
            await self.disconnect(ws)


ws_manager = ConnectionManager()
