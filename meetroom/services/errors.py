"""Errors surfaced to signaling clients as ``{"error": ...}`` payloads."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class SignalingError(RuntimeError):
    """Base class for failures reported back over the request channel."""


class RoomNotFound(SignalingError):
    def __init__(self, room_id: str) -> None:
        super().__init__("Room does not exist")
        self.room_id = room_id


class RoomAlreadyExists(SignalingError):
    def __init__(self, room_id: str) -> None:
        super().__init__("already exists")
        self.room_id = room_id


class NotInRoom(SignalingError):
    def __init__(self) -> None:
        super().__init__("not currently in a room")


class PeerNotFound(SignalingError):
    def __init__(self, peer_id: str) -> None:
        super().__init__(f"peer {peer_id} is not in this room")
        self.peer_id = peer_id


class PeerClosed(SignalingError):
    def __init__(self, peer_id: str) -> None:
        super().__init__(f"peer {peer_id} is closed")
        self.peer_id = peer_id


class TransportNotFound(SignalingError):
    def __init__(self, transport_id: str) -> None:
        super().__init__(f"transport {transport_id} not found")
        self.transport_id = transport_id


class ProducerAlreadyExists(SignalingError):
    def __init__(self, media_type: str, producer_id: str) -> None:
        super().__init__(f"already producing {media_type}")
        self.media_type = media_type
        self.producer_id = producer_id


class RouterNotReady(SignalingError):
    def __init__(self, room_id: str) -> None:
        super().__init__("router is not ready")
        self.room_id = room_id


class EngineFailure(SignalingError):
    """The media engine rejected or failed a create/connect call."""


@contextmanager
def engine_call(action: str) -> Iterator[None]:
    """Convert media engine exceptions into :class:`EngineFailure`."""

    try:
        yield
    except SignalingError:
        raise
    except Exception as exc:  # noqa: BLE001 - engines raise whatever they like
        logger.exception("Media engine failed to %s", action)
        raise EngineFailure(f"failed to {action}: {exc}") from exc
