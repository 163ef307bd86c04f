"""Room session state: peers, router, producer discovery and fan-out."""
from __future__ import annotations

import asyncio
import enum
import logging
from functools import partial
from typing import Any, Awaitable, Callable, Coroutine

from ..core.config import Settings, get_settings
from ..media.engine import Router, WebRtcTransport, Worker
from ..schemas.signaling import (
    ConsumerClosedEvent,
    PeerSummary,
    ProducerAnnouncement,
    RoomSnapshot,
    RoomSummary,
    TransportParams,
)
from .errors import PeerNotFound, RoomNotFound, RouterNotReady, engine_call
from .peer import Peer

logger = logging.getLogger(__name__)

Notifier = Callable[[str, str, Any], Awaitable[None]]


class RoomState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    EMPTY = "empty"


class Room:
    """One media routing domain and the peers sharing it.

    The router is created in the background right after construction and stays
    ``None`` until the worker hands it back; use :meth:`wait_ready` before
    anything that needs it. Engine calls run without holding ``lock``; only the
    registry updates that follow them do.
    """

    def __init__(
        self,
        room_id: str,
        worker: Worker,
        notify: Notifier,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.id = room_id
        self.worker = worker
        self.router: Router | None = None
        self.peers: dict[str, Peer] = {}
        self.lock = asyncio.Lock()
        self._notify = notify
        self._settings = settings or get_settings()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._had_peers = False
        self._closed = False
        self._router_task = asyncio.create_task(self._init_router())

    def __repr__(self) -> str:
        return f"Room(id={self.id!r}, peers={len(self.peers)}, state={self.state.value})"

    @property
    def state(self) -> RoomState:
        if self._closed or (self._had_peers and not self.peers):
            return RoomState.EMPTY
        return RoomState.READY if self.router is not None else RoomState.UNINITIALIZED

    @property
    def closed(self) -> bool:
        return self._closed

    async def _init_router(self) -> None:
        try:
            router = await self.worker.create_router(self._settings.media_codecs)
        except Exception:  # noqa: BLE001 - surfaced through wait_ready()
            logger.exception("Router creation failed for room %s", self.id)
            return
        if self._closed:
            router.close()
            return
        self.router = router
        logger.info("Router %s ready for room %s", router.id, self.id)

    async def wait_ready(self, timeout: float | None = None) -> Router:
        """Wait for the router, raising :class:`RouterNotReady` if it never comes."""

        if self.router is None and not self._router_task.done():
            try:
                await asyncio.wait_for(
                    asyncio.shield(self._router_task),
                    timeout if timeout is not None else self._settings.router_ready_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Router for room %s not ready in time", self.id)
        if self.router is None:
            raise RouterNotReady(self.id)
        return self.router

    async def add_peer(self, peer: Peer) -> None:
        async with self.lock:
            if self._closed:
                raise RoomNotFound(self.id)
            # Every peer's registries serialize on the room's lock from now on.
            peer.lock = self.lock
            self.peers[peer.id] = peer
            self._had_peers = True
        logger.info("User joined room=%s name=%s peer=%s", self.id, peer.name, peer.id)

    async def remove_peer(self, peer_id: str) -> Peer | None:
        async with self.lock:
            peer = self.peers.pop(peer_id, None)
        if peer is None:
            logger.debug("remove_peer: %s is not in room %s", peer_id, self.id)
            return None
        peer.close()
        logger.info("Peer left room=%s name=%s peer=%s", self.id, peer.name, peer.id)
        return peer

    def get_peer(self, peer_id: str) -> Peer | None:
        return self.peers.get(peer_id)

    def _require_peer(self, peer_id: str) -> Peer:
        peer = self.peers.get(peer_id)
        if peer is None:
            raise PeerNotFound(peer_id)
        return peer

    def get_router_rtp_capabilities(self) -> dict[str, Any] | None:
        """Router capabilities, or ``None`` while the router is still pending."""

        if self.router is None:
            return None
        return self.router.rtp_capabilities

    async def create_webrtc_transport(self, peer_id: str, *, force_tcp: bool = False) -> dict[str, Any]:
        router = self.router
        if router is None:
            raise RouterNotReady(self.id)
        peer = self._require_peer(peer_id)
        settings = self._settings

        with engine_call("create transport"):
            transport = await router.create_webrtc_transport(
                listen_ip=settings.listen_ip,
                announced_ip=settings.announced_ip,
                enable_udp=not force_tcp,
                enable_tcp=True,
                prefer_udp=not force_tcp,
                initial_available_outgoing_bitrate=settings.initial_available_outgoing_bitrate,
            )

        if settings.max_incoming_bitrate:
            try:
                await transport.set_max_incoming_bitrate(settings.max_incoming_bitrate)
            except Exception as exc:  # noqa: BLE001 - the bitrate cap is best effort
                logger.debug("set_max_incoming_bitrate failed on %s: %s", transport.id, exc)

        transport.on("dtlsstatechange", partial(self._on_transport_dtls_state, peer_id, transport))

        async with self.lock:
            if self.peers.get(peer_id) is not peer or peer.closed:
                transport.close()
                raise PeerNotFound(peer_id)
            peer.add_transport(transport)

        params = TransportParams(
            id=transport.id,
            ice_parameters=transport.ice_parameters,
            ice_candidates=transport.ice_candidates,
            dtls_parameters=transport.dtls_parameters,
        )
        return params.model_dump(by_alias=True)

    async def connect_peer_transport(
        self, peer_id: str, transport_id: str, dtls_parameters: dict[str, Any]
    ) -> None:
        """Connect a peer's transport. Unknown peers and transports are ignored."""

        peer = self.peers.get(peer_id)
        if peer is None:
            logger.debug("connect_peer_transport: %s is not in room %s", peer_id, self.id)
            return
        await peer.connect_transport(transport_id, dtls_parameters)

    async def produce(
        self,
        peer_id: str,
        transport_id: str,
        rtp_parameters: dict[str, Any],
        kind: str,
        app_data: dict[str, Any] | None = None,
    ) -> str:
        peer = self._require_peer(peer_id)
        producer = await peer.create_producer(transport_id, rtp_parameters, kind, app_data)

        # The producer is registered by now, so the snapshot already lists it.
        announcement = ProducerAnnouncement(producer_id=producer.id, producer_peer_id=peer_id)
        await self.broadcast(peer_id, "newProducers", [announcement.model_dump(by_alias=True)])
        return producer.id

    def can_consume(self, producer_id: str, rtp_capabilities: dict[str, Any]) -> bool:
        router = self.router
        if router is None:
            return False
        try:
            return router.can_consume(producer_id, rtp_capabilities)
        except Exception as exc:  # noqa: BLE001 - malformed capabilities mean "no"
            logger.warning("can_consume raised for producer %s: %s", producer_id, exc)
            return False

    async def consume(
        self,
        peer_id: str,
        transport_id: str,
        producer_id: str,
        rtp_capabilities: dict[str, Any],
    ) -> dict[str, Any] | None:
        """Create a consumer, or return ``None`` if the router says it cannot."""

        if not self.can_consume(producer_id, rtp_capabilities):
            logger.warning("Router can't consume producer=%s for peer=%s", producer_id, peer_id)
            return None

        peer = self._require_peer(peer_id)
        created = await peer.create_consumer(
            transport_id,
            producer_id,
            rtp_capabilities,
            on_producer_closed=partial(self._on_consumer_producer_closed, peer_id),
        )
        if created is None:
            return None
        logger.info(
            "Consuming name=%s producer_id=%s consumer_id=%s",
            peer.name,
            producer_id,
            created.consumer.id,
        )
        return created.params

    def close_producer(self, peer_id: str, producer_id: str) -> None:
        """Close a peer's producer.

        Other peers are not told directly; each of their consumers of this
        producer closes and its owner gets ``consumerClosed``.
        """

        peer = self.peers.get(peer_id)
        if peer is None:
            logger.debug("close_producer: %s is not in room %s", peer_id, self.id)
            return
        peer.close_producer(producer_id)

    def get_producer_list_for_peer(self) -> list[dict[str, Any]]:
        """Snapshot of every live producer in the room."""

        producers: list[dict[str, Any]] = []
        for peer in self.peers.values():
            for producer_id in peer.producers:
                announcement = ProducerAnnouncement(producer_id=producer_id, producer_peer_id=peer.id)
                producers.append(announcement.model_dump(by_alias=True))
        return producers

    async def broadcast(self, exclude_id: str | None, event: str, payload: Any) -> None:
        """Send an event to every peer in the room except ``exclude_id``."""

        targets = [peer_id for peer_id in self.peers if peer_id != exclude_id]
        if targets:
            await asyncio.gather(*(self.send(target, event, payload) for target in targets))

    async def send(self, target_id: str, event: str, payload: Any) -> None:
        await self._notify(target_id, event, payload)

    def to_json(self) -> dict[str, Any]:
        snapshot = RoomSnapshot(
            id=self.id,
            peers=[PeerSummary(id=peer.id, name=peer.name) for peer in self.peers.values()],
        )
        return snapshot.model_dump()

    def summary(self) -> RoomSummary:
        return RoomSummary(
            id=self.id,
            state=self.state.value,
            peers=len(self.peers),
            producers=sum(len(peer.producers) for peer in self.peers.values()),
        )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for notifications scheduled by engine observers."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_transport_dtls_state(self, peer_id: str, transport: WebRtcTransport, state: str) -> None:
        if state != "closed":
            return
        peer = self.peers.get(peer_id)
        logger.info("Transport close name=%s transport_id=%s", peer.name if peer else peer_id, transport.id)
        transport.close()
        if peer is not None:
            peer.remove_transport(transport.id)

    def _on_consumer_producer_closed(self, peer_id: str, consumer_id: str) -> None:
        peer = self.peers.get(peer_id)
        if peer is None or peer.remove_consumer(consumer_id) is None:
            return
        logger.info("Consumer closed due to producerclose event name=%s consumer_id=%s", peer.name, consumer_id)
        event = ConsumerClosedEvent(consumer_id=consumer_id)
        self._spawn(self.send(peer_id, "consumerClosed", event.model_dump()))

    def close(self) -> None:
        """Tear down every peer and the router. The room cannot be reused."""

        if self._closed:
            return
        self._closed = True
        for peer in list(self.peers.values()):
            peer.close()
        self.peers.clear()
        if self.router is not None:
            self.router.close()
        logger.info("Room %s closed", self.id)
