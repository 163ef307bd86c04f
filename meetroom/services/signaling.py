"""In-memory registry of live signaling connections."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)

SendCallable = Callable[[dict], Awaitable[None]]


@dataclass(slots=True)
class SignalingConnection:
    """Connection wrapper for signaling participants."""

    connection_id: str
    send: SendCallable
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def deliver(self, message: dict) -> None:
        """Send one frame; replies and pushes never interleave on the socket."""

        async with self._send_lock:
            await self.send(message)


class ConnectionManager:
    """Route push events to connections by id."""

    def __init__(self) -> None:
        self._connections: Dict[str, SignalingConnection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, connection: SignalingConnection) -> None:
        self._connections[connection.connection_id] = connection

    def unregister(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)

    async def emit(self, connection_id: str, event: str, data: Any) -> None:
        """Push ``event`` to one connection. Gone or broken connections are skipped."""

        connection = self._connections.get(connection_id)
        if connection is None:
            logger.debug("Dropping %s for unknown connection %s", event, connection_id)
            return
        try:
            await connection.deliver({"event": event, "data": data})
        except Exception as exc:  # noqa: BLE001 - the socket is going away
            logger.debug("Push %s to %s failed: %s", event, connection_id, exc)
