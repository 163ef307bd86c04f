"""Structural interface the session layer needs from a media engine.

The signaling core never touches RTP itself. It asks a worker for a router,
asks the router for transports, and asks transports for producers and
consumers. Every engine object exposes ``on(event, handler)`` so the core can
register its observers at creation time:

- ``Worker``: ``"died"``
- ``WebRtcTransport``: ``"dtlsstatechange"`` (handler receives the new state)
- ``Producer``: ``"transportclose"``
- ``Consumer``: ``"transportclose"``, ``"producerclose"``

Closing is synchronous and cascades inside the engine: closing a transport
closes its producers and consumers, and closing a producer closes every
consumer of it.
"""
from __future__ import annotations

from typing import Any, Callable, Protocol

EventHandler = Callable[..., Any]


class MediaEngineError(RuntimeError):
    """Raised by an engine when it refuses or fails an operation."""


class Observable(Protocol):
    def on(self, event: str, handler: EventHandler) -> None:
        ...


class Producer(Observable, Protocol):
    @property
    def id(self) -> str:
        ...

    @property
    def kind(self) -> str:
        ...

    @property
    def closed(self) -> bool:
        ...

    def close(self) -> None:
        ...


class Consumer(Observable, Protocol):
    @property
    def id(self) -> str:
        ...

    @property
    def producer_id(self) -> str:
        ...

    @property
    def kind(self) -> str:
        ...

    @property
    def rtp_parameters(self) -> dict[str, Any]:
        ...

    @property
    def type(self) -> str:
        ...

    @property
    def producer_paused(self) -> bool:
        ...

    @property
    def closed(self) -> bool:
        ...

    def close(self) -> None:
        ...


class WebRtcTransport(Observable, Protocol):
    @property
    def id(self) -> str:
        ...

    @property
    def ice_parameters(self) -> dict[str, Any]:
        ...

    @property
    def ice_candidates(self) -> list[dict[str, Any]]:
        ...

    @property
    def dtls_parameters(self) -> dict[str, Any]:
        ...

    @property
    def closed(self) -> bool:
        ...

    async def connect(self, dtls_parameters: dict[str, Any]) -> None:
        ...

    async def set_max_incoming_bitrate(self, bitrate: int) -> None:
        ...

    async def produce(
        self,
        kind: str,
        rtp_parameters: dict[str, Any],
        app_data: dict[str, Any] | None = None,
    ) -> Producer:
        ...

    async def consume(
        self,
        producer_id: str,
        rtp_capabilities: dict[str, Any],
        paused: bool = False,
    ) -> Consumer:
        ...

    def close(self) -> None:
        ...


class Router(Protocol):
    @property
    def id(self) -> str:
        ...

    @property
    def rtp_capabilities(self) -> dict[str, Any]:
        ...

    def can_consume(self, producer_id: str, rtp_capabilities: dict[str, Any]) -> bool:
        ...

    async def create_webrtc_transport(
        self,
        *,
        listen_ip: str,
        announced_ip: str | None = None,
        enable_udp: bool = True,
        enable_tcp: bool = True,
        prefer_udp: bool = True,
        initial_available_outgoing_bitrate: int | None = None,
    ) -> WebRtcTransport:
        ...

    def close(self) -> None:
        ...


class Worker(Observable, Protocol):
    @property
    def pid(self) -> int:
        ...

    async def create_router(self, media_codecs: list[dict[str, Any]]) -> Router:
        ...

    def close(self) -> None:
        ...


class MediaEngine(Protocol):
    async def create_worker(self, *, rtc_min_port: int, rtc_max_port: int) -> Worker:
        ...
