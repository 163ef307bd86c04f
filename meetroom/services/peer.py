"""Per-connection media session state."""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable

from ..media.engine import Consumer, Producer, WebRtcTransport
from ..schemas.signaling import ConsumerParams
from .errors import PeerClosed, ProducerAlreadyExists, TransportNotFound, engine_call

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("audio", "video", "screen")


class PeerState(str, enum.Enum):
    JOINED = "joined"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass(slots=True)
class CreatedConsumer:
    consumer: Consumer
    params: dict[str, Any]


def media_type_of(kind: str, app_data: dict[str, Any] | None) -> str:
    """Logical media type of a producer; ``appData.mediaType`` refines the kind."""

    requested = (app_data or {}).get("mediaType")
    if requested in MEDIA_TYPES:
        return requested
    return kind


class Peer:
    """Transports, producers and consumers owned by one connection.

    Everything in the three registries was created on one of this peer's own
    transports. Inserts that follow an engine call happen under ``lock``, which
    the owning room replaces with its own lock on admission.
    """

    def __init__(self, peer_id: str, name: str) -> None:
        self.id = peer_id
        self.name = name
        self.lock = asyncio.Lock()
        self.transports: dict[str, WebRtcTransport] = {}
        self.producers: dict[str, Producer] = {}
        self.consumers: dict[str, Consumer] = {}
        self._media_types: dict[str, str] = {}
        self._activated = False
        self.closed = False

    def __repr__(self) -> str:
        return f"Peer(id={self.id!r}, name={self.name!r}, state={self.state.value})"

    @property
    def state(self) -> PeerState:
        if self.closed:
            return PeerState.CLOSED
        return PeerState.ACTIVE if self._activated else PeerState.JOINED

    def _ensure_open(self) -> None:
        if self.closed:
            raise PeerClosed(self.id)

    def _require_transport(self, transport_id: str) -> WebRtcTransport:
        transport = self.transports.get(transport_id)
        if transport is None:
            raise TransportNotFound(transport_id)
        return transport

    def producer_for(self, media_type: str) -> Producer | None:
        for producer_id, current in self._media_types.items():
            if current == media_type:
                return self.producers.get(producer_id)
        return None

    def add_transport(self, transport: WebRtcTransport) -> None:
        self._ensure_open()
        self.transports[transport.id] = transport
        self._activated = True
        logger.info("Adding transport %s for %s", transport.id, self.name)

    def remove_transport(self, transport_id: str) -> WebRtcTransport | None:
        return self.transports.pop(transport_id, None)

    async def connect_transport(self, transport_id: str, dtls_parameters: dict[str, Any]) -> None:
        transport = self.transports.get(transport_id)
        if transport is None:
            logger.debug("Ignoring connect for unknown transport %s of %s", transport_id, self.name)
            return
        with engine_call("connect transport"):
            await transport.connect(dtls_parameters)

    async def create_producer(
        self,
        transport_id: str,
        rtp_parameters: dict[str, Any],
        kind: str,
        app_data: dict[str, Any] | None = None,
    ) -> Producer:
        self._ensure_open()
        transport = self._require_transport(transport_id)
        media_type = media_type_of(kind, app_data)
        existing = self.producer_for(media_type)
        if existing is not None:
            raise ProducerAlreadyExists(media_type, existing.id)

        with engine_call("produce"):
            producer = await transport.produce(kind, rtp_parameters, {**(app_data or {}), "mediaType": media_type})
        producer.on("transportclose", partial(self._on_producer_transport_closed, producer.id))

        async with self.lock:
            # Another produce for the same media type may have finished first.
            existing = self.producer_for(media_type)
            if self.closed or producer.closed or existing is not None:
                producer.close()
                self._ensure_open()
                if existing is not None:
                    raise ProducerAlreadyExists(media_type, existing.id)
                raise TransportNotFound(transport_id)
            self.producers[producer.id] = producer
            self._media_types[producer.id] = media_type

        logger.info("Producer %s (%s) created for %s", producer.id, media_type, self.name)
        return producer

    async def create_consumer(
        self,
        transport_id: str,
        producer_id: str,
        rtp_capabilities: dict[str, Any],
        *,
        on_producer_closed: Callable[[str], None] | None = None,
    ) -> CreatedConsumer | None:
        """Create a consumer of ``producer_id``.

        ``on_producer_closed`` is registered before the consumer can be observed
        by anyone else. Returns ``None`` when the producer went away while the
        engine was still building the consumer.
        """

        self._ensure_open()
        transport = self._require_transport(transport_id)

        with engine_call("consume"):
            consumer = await transport.consume(producer_id, rtp_capabilities, paused=False)
        consumer.on("transportclose", partial(self._on_consumer_transport_closed, consumer.id))
        if on_producer_closed is not None:
            consumer.on("producerclose", partial(on_producer_closed, consumer.id))

        async with self.lock:
            if self.closed:
                consumer.close()
                raise PeerClosed(self.id)
            if consumer.closed:
                logger.info("Consumer %s closed before registration", consumer.id)
                return None
            self.consumers[consumer.id] = consumer

        params = ConsumerParams(
            id=consumer.id,
            producer_id=producer_id,
            kind=consumer.kind,
            rtp_parameters=consumer.rtp_parameters,
            type=consumer.type,
            producer_paused=consumer.producer_paused,
        )
        return CreatedConsumer(consumer=consumer, params=params.model_dump(by_alias=True))

    def close_producer(self, producer_id: str) -> bool:
        """Close and deregister a producer. Unknown or closed ids are ignored."""

        producer = self.producers.pop(producer_id, None)
        self._media_types.pop(producer_id, None)
        if producer is None:
            logger.debug("Producer %s of %s already gone", producer_id, self.name)
            return False
        try:
            producer.close()
        except Exception as exc:  # noqa: BLE001 - already-closed producers may complain
            logger.warning("Closing producer %s raised: %s", producer_id, exc)
        logger.info("Producer %s of %s closed", producer_id, self.name)
        return True

    def remove_consumer(self, consumer_id: str) -> Consumer | None:
        return self.consumers.pop(consumer_id, None)

    def close(self) -> None:
        """Close every transport; the engine closes their producers and consumers."""

        if self.closed:
            return
        self.closed = True
        for transport in list(self.transports.values()):
            try:
                transport.close()
            except Exception:  # noqa: BLE001 - keep tearing down the rest
                logger.exception("Closing transport %s of %s failed", transport.id, self.name)
        self.transports.clear()
        logger.info("Peer %s (%s) closed", self.id, self.name)

    def _on_producer_transport_closed(self, producer_id: str) -> None:
        logger.info("Producer transport close name=%s producer_id=%s", self.name, producer_id)
        self.close_producer(producer_id)

    def _on_consumer_transport_closed(self, consumer_id: str) -> None:
        logger.info("Consumer transport close name=%s consumer_id=%s", self.name, consumer_id)
        self.remove_consumer(consumer_id)
