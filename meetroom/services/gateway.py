"""Translate signaling messages into room operations and back."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict

from pydantic import ValidationError

from ..schemas import signaling as schemas
from .errors import NotInRoom, SignalingError
from .peer import Peer
from .registry import RoomRegistry
from .room import Room
from .signaling import ConnectionManager, SignalingConnection

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]

OK = {"status": "ok"}


class SignalingSession:
    """Protocol state for one connected client.

    Every request handler returns the reply payload. Failures come back as
    ``{"error": ...}`` instead of raising, so nothing escapes to the socket loop.
    """

    def __init__(self, connection_id: str, registry: RoomRegistry) -> None:
        self.connection_id = connection_id
        self.room_id: str | None = None
        self._registry = registry
        self._handlers: Dict[str, Handler] = {
            "createRoom": self.create_room,
            "join": self.join,
            "getRouterRtpCapabilities": self.get_router_rtp_capabilities,
            "createWebRtcTransport": self.create_webrtc_transport,
            "connectTransport": self.connect_transport,
            "produce": self.produce,
            "consume": self.consume,
            "producerClosed": self.producer_closed,
            "getProducers": self.get_producers,
            "getMyRoomInfo": self.get_my_room_info,
            "exitRoom": self.exit_room,
        }

    async def handle(self, event: str, data: Any) -> Any:
        handler = self._handlers.get(event)
        if handler is None:
            return {"error": f"unknown event {event!r}"}
        payload = data if isinstance(data, dict) else {}
        try:
            return await handler(payload)
        except ValidationError as exc:
            logger.warning("Invalid %s payload from %s: %s", event, self.connection_id, exc)
            return {"error": "invalid payload", "detail": exc.errors(include_url=False, include_context=False)}
        except SignalingError as exc:
            logger.warning("%s failed for %s: %s", event, self._describe(), exc)
            return {"error": str(exc)}
        except Exception:  # noqa: BLE001 - one bad request must not kill the connection
            logger.exception("Unhandled error in %s for %s", event, self._describe())
            return {"error": "internal server error"}

    def _describe(self) -> str:
        room = self._current_room_or_none()
        peer = room.get_peer(self.connection_id) if room else None
        return peer.name if peer else self.connection_id

    def _current_room_or_none(self) -> Room | None:
        if self.room_id is None:
            return None
        return self._registry.get(self.room_id)

    def _current_room(self) -> Room:
        room = self._current_room_or_none()
        if room is None:
            raise NotInRoom()
        return room

    async def create_room(self, data: Dict[str, Any]) -> Any:
        request = schemas.CreateRoomRequest.model_validate(data)
        room = await self._registry.create_room(request.room_id)
        return schemas.CreateRoomResponse(room_id=room.id).model_dump()

    async def join(self, data: Dict[str, Any]) -> Any:
        request = schemas.JoinRequest.model_validate(data)
        current = self._current_room_or_none()
        if current is not None and current.id == request.room_id and current.get_peer(self.connection_id):
            return current.to_json()

        # Admit first so a failed join keeps the peer where it was.
        previous = self.room_id
        room = await self._registry.admit(request.room_id, Peer(self.connection_id, request.name))
        self.room_id = room.id
        if previous is not None and previous != room.id:
            await self._leave_room(previous)
        return room.to_json()

    async def get_router_rtp_capabilities(self, data: Dict[str, Any]) -> Any:
        room = self._current_room()
        await room.wait_ready()
        return room.get_router_rtp_capabilities()

    async def create_webrtc_transport(self, data: Dict[str, Any]) -> Any:
        request = schemas.CreateTransportRequest.model_validate(data)
        room = self._current_room()
        await room.wait_ready()
        params = await room.create_webrtc_transport(self.connection_id, force_tcp=request.force_tcp)
        direction = "send" if request.producing else "recv" if request.consuming else "any"
        logger.info("Create webrtc transport name=%s direction=%s id=%s", self._describe(), direction, params["id"])
        return params

    async def connect_transport(self, data: Dict[str, Any]) -> Any:
        request = schemas.ConnectTransportRequest.model_validate(data)
        room = self._current_room()
        await room.connect_peer_transport(self.connection_id, request.transport_id, request.dtls_parameters)
        return dict(OK)

    async def produce(self, data: Dict[str, Any]) -> Any:
        request = schemas.ProduceRequest.model_validate(data)
        room = self._current_room()
        producer_id = await room.produce(
            self.connection_id,
            request.transport_id,
            request.rtp_parameters,
            request.kind,
            request.app_data,
        )
        return schemas.ProduceResponse(producer_id=producer_id).model_dump()

    async def consume(self, data: Dict[str, Any]) -> Any:
        request = schemas.ConsumeRequest.model_validate(data)
        room = self._current_room()
        return await room.consume(
            self.connection_id,
            request.transport_id,
            request.producer_id,
            request.rtp_capabilities,
        )

    async def producer_closed(self, data: Dict[str, Any]) -> None:
        request = schemas.ProducerClosedRequest.model_validate(data)
        room = self._current_room_or_none()
        if room is None:
            logger.debug("producerClosed from %s outside of a room", self.connection_id)
            return None
        room.close_producer(self.connection_id, request.producer_id)
        return None

    async def get_producers(self, data: Dict[str, Any]) -> None:
        room = self._current_room_or_none()
        if room is None:
            return None
        await room.send(self.connection_id, "newProducers", room.get_producer_list_for_peer())
        return None

    async def get_my_room_info(self, data: Dict[str, Any]) -> Any:
        return self._current_room().to_json()

    async def exit_room(self, data: Dict[str, Any]) -> Any:
        self._current_room()
        await self._leave()
        return dict(OK)

    async def disconnect(self) -> None:
        if self.room_id is not None:
            await self._leave()

    async def _leave(self) -> None:
        room_id, self.room_id = self.room_id, None
        if room_id is not None:
            await self._leave_room(room_id)

    async def _leave_room(self, room_id: str) -> None:
        room = self._registry.get(room_id)
        if room is None:
            return
        await room.remove_peer(self.connection_id)
        await self._registry.remove_if_empty(room_id)


class SignalingGateway:
    """Bind connection lifecycle events to sessions."""

    def __init__(self, registry: RoomRegistry, connections: ConnectionManager) -> None:
        self.registry = registry
        self.connections = connections

    def connect(self, connection: SignalingConnection) -> SignalingSession:
        self.connections.register(connection)
        logger.info("Connection opened %s", connection.connection_id)
        return SignalingSession(connection.connection_id, self.registry)

    async def disconnect(self, session: SignalingSession) -> None:
        logger.info("Disconnect %s", session.connection_id)
        try:
            await session.disconnect()
        finally:
            self.connections.unregister(session.connection_id)
