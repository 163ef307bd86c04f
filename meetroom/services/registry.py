"""Process-wide room registry."""
from __future__ import annotations

import asyncio
import logging

from ..core.config import Settings, get_settings
from .errors import RoomAlreadyExists, RoomNotFound
from .peer import Peer
from .room import Notifier, Room
from .workers import WorkerPool

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Own every live room and decide when rooms come and go.

    Creation, admission and removal share one lock so "already exists" and
    "is empty" checks cannot race with the insert or delete that follows them.
    """

    def __init__(self, pool: WorkerPool, notify: Notifier, *, settings: Settings | None = None) -> None:
        self._pool = pool
        self._notify = notify
        self._settings = settings or get_settings()
        self._rooms: dict[str, Room] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._rooms)

    async def create_room(self, room_id: str) -> Room:
        async with self._lock:
            if room_id in self._rooms:
                raise RoomAlreadyExists(room_id)
            worker = self._pool.assign_next()
            room = Room(room_id, worker, self._notify, settings=self._settings)
            self._rooms[room_id] = room
        logger.info("Created room room_id=%s worker_pid=%s", room_id, worker.pid)
        return room

    def get(self, room_id: str) -> Room | None:
        return self._rooms.get(room_id)

    def rooms(self) -> list[Room]:
        return list(self._rooms.values())

    async def admit(self, room_id: str, peer: Peer) -> Room:
        """Add ``peer`` to an existing room."""

        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                raise RoomNotFound(room_id)
            await room.add_peer(peer)
        return room

    async def remove_if_empty(self, room_id: str) -> bool:
        async with self._lock:
            room = self._rooms.get(room_id)
            if room is None or room.peers:
                return False
            del self._rooms[room_id]
        room.close()
        await room.drain()
        logger.info("Removed empty room room_id=%s", room_id)
        return True

    async def close(self) -> None:
        async with self._lock:
            rooms = list(self._rooms.values())
            self._rooms.clear()
        for room in rooms:
            room.close()
            await room.drain()
        if rooms:
            logger.info("Closed %d room(s)", len(rooms))
