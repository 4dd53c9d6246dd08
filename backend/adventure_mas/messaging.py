"""WebSocket connection manager for live interaction logs.

This module tracks subscribed sockets per session and fans out
interaction log entries to connected clients.
"""

import asyncio
from collections import defaultdict
from typing import Any

from fastapi import WebSocket


class ConnectionManager:
    """In-memory fan-out manager keyed by session id."""

    def __init__(self) -> None:
        self._connections: dict[str, list[WebSocket]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections[session_id].append(websocket)

    async def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            if session_id in self._connections and websocket in self._connections[session_id]:
                self._connections[session_id].remove(websocket)
            if not self._connections.get(session_id):
                self._connections.pop(session_id, None)

    async def broadcast(self, session_id: str, payload: dict[str, Any]) -> None:
        async with self._lock:
            targets = list(self._connections.get(session_id, []))
        for ws in targets:
            await ws.send_json(payload)

    def count(self, session_id: str) -> int:
        return len(self._connections.get(session_id, []))
