"""In-process media engine.

Keeps the same bookkeeping a real SFU worker would (routers, transports,
producers, consumers, close cascades and capability matching) without moving
any packets. It is the default engine for development and the one the test
suite drives.
"""
from __future__ import annotations

import asyncio
import logging
import os
import secrets
from collections import defaultdict
from typing import Any
from uuid import uuid4

from .engine import EventHandler, MediaEngineError

logger = logging.getLogger(__name__)

_MEDIA_KINDS = ("audio", "video")


def _mime(codec: dict[str, Any]) -> str:
    return str(codec.get("mimeType", "")).lower()


def _is_rtx(codec: dict[str, Any]) -> bool:
    return _mime(codec).endswith("/rtx")


def _codec_matches(offered: dict[str, Any], supported: dict[str, Any]) -> bool:
    if _mime(offered) != _mime(supported):
        return False
    offered_rate = offered.get("clockRate")
    supported_rate = supported.get("clockRate")
    return offered_rate is None or supported_rate is None or offered_rate == supported_rate


def _fingerprint() -> str:
    raw = secrets.token_hex(32).upper()
    return ":".join(raw[i : i + 2] for i in range(0, len(raw), 2))


class _Emitter:
    """Minimal observer registry shared by every engine object."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers[event].append(handler)

    def _emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, ())):
            try:
                handler(*args)
            except Exception:  # noqa: BLE001 - one bad observer must not break the cascade
                logger.exception("Observer for %r raised", event)


class LocalProducer(_Emitter):
    def __init__(
        self,
        transport: LocalWebRtcTransport,
        kind: str,
        rtp_parameters: dict[str, Any],
        app_data: dict[str, Any] | None,
    ) -> None:
        super().__init__()
        self.id = str(uuid4())
        self.kind = kind
        self.rtp_parameters = rtp_parameters
        self.app_data = dict(app_data or {})
        self.closed = False
        self._transport = transport
        self._consumers: dict[str, LocalConsumer] = {}

    def close(self) -> None:
        if self.closed:
            return
        self._close()

    def _close(self) -> None:
        self.closed = True
        self._transport._producers.pop(self.id, None)
        self._transport.router._producers.pop(self.id, None)
        for consumer in list(self._consumers.values()):
            consumer._on_producer_closed()
        self._consumers.clear()

    def _on_transport_closed(self) -> None:
        if self.closed:
            return
        self._close()
        self._emit("transportclose")


class LocalConsumer(_Emitter):
    def __init__(
        self,
        transport: LocalWebRtcTransport,
        producer: LocalProducer,
        rtp_parameters: dict[str, Any],
        paused: bool,
    ) -> None:
        super().__init__()
        self.id = str(uuid4())
        self.producer_id = producer.id
        self.kind = producer.kind
        self.rtp_parameters = rtp_parameters
        self.type = "simulcast" if len(producer.rtp_parameters.get("encodings") or []) > 1 else "simple"
        self.paused = paused
        self.producer_paused = False
        self.closed = False
        self._transport = transport
        self._producer = producer

    def close(self) -> None:
        if self.closed:
            return
        self._detach()

    def _detach(self) -> None:
        self.closed = True
        self._transport._consumers.pop(self.id, None)
        self._producer._consumers.pop(self.id, None)

    def _on_producer_closed(self) -> None:
        if self.closed:
            return
        self._detach()
        self._emit("producerclose")

    def _on_transport_closed(self) -> None:
        if self.closed:
            return
        self._detach()
        self._emit("transportclose")


class LocalWebRtcTransport(_Emitter):
    def __init__(
        self,
        router: LocalRouter,
        *,
        ip: str,
        port: int,
        enable_udp: bool,
        enable_tcp: bool,
        prefer_udp: bool,
        initial_available_outgoing_bitrate: int | None,
    ) -> None:
        super().__init__()
        self.id = str(uuid4())
        self.router = router
        self.port = port
        self.closed = False
        self.dtls_state = "new"
        self.max_incoming_bitrate: int | None = None
        self.initial_available_outgoing_bitrate = initial_available_outgoing_bitrate
        self.ice_parameters = {
            "usernameFragment": secrets.token_hex(8),
            "password": secrets.token_hex(16),
            "iceLite": True,
        }
        self.ice_candidates = self._build_candidates(ip, port, enable_udp, enable_tcp, prefer_udp)
        self.dtls_parameters = {
            "role": "auto",
            "fingerprints": [{"algorithm": "sha-256", "value": _fingerprint()}],
        }
        self._producers: dict[str, LocalProducer] = {}
        self._consumers: dict[str, LocalConsumer] = {}

    @staticmethod
    def _build_candidates(
        ip: str, port: int, enable_udp: bool, enable_tcp: bool, prefer_udp: bool
    ) -> list[dict[str, Any]]:
        candidates: list[dict[str, Any]] = []
        for protocol, enabled in (("udp", enable_udp), ("tcp", enable_tcp)):
            if not enabled:
                continue
            preferred = (protocol == "udp") == prefer_udp
            candidate: dict[str, Any] = {
                "foundation": f"{protocol}candidate",
                "priority": 1076302079 if preferred else 1076276479,
                "ip": ip,
                "protocol": protocol,
                "port": port,
                "type": "host",
            }
            if protocol == "tcp":
                candidate["tcpType"] = "passive"
            candidates.append(candidate)
        return candidates

    def _ensure_open(self) -> None:
        if self.closed:
            raise MediaEngineError(f"transport {self.id} is closed")

    async def connect(self, dtls_parameters: dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self._ensure_open()
        if self.dtls_state != "new":
            raise MediaEngineError("connect() already called")
        if not isinstance(dtls_parameters, dict) or not dtls_parameters.get("fingerprints"):
            raise MediaEngineError("dtlsParameters must carry at least one fingerprint")
        self.update_dtls_state("connecting")
        self.update_dtls_state("connected")

    async def set_max_incoming_bitrate(self, bitrate: int) -> None:
        self._ensure_open()
        if bitrate < 0:
            raise MediaEngineError("bitrate must be positive")
        self.max_incoming_bitrate = bitrate

    async def produce(
        self,
        kind: str,
        rtp_parameters: dict[str, Any],
        app_data: dict[str, Any] | None = None,
    ) -> LocalProducer:
        await asyncio.sleep(0)
        self._ensure_open()
        if kind not in _MEDIA_KINDS:
            raise MediaEngineError(f"invalid kind {kind!r}")
        codecs = [codec for codec in (rtp_parameters or {}).get("codecs") or [] if isinstance(codec, dict)]
        if not codecs:
            raise MediaEngineError("rtpParameters.codecs must not be empty")
        supported = self.router.rtp_capabilities["codecs"]
        for codec in codecs:
            if _is_rtx(codec):
                continue
            if not any(_codec_matches(codec, cap) and cap["kind"] == kind for cap in supported):
                raise MediaEngineError(f"unsupported codec {codec.get('mimeType')!r}")

        producer = LocalProducer(self, kind, rtp_parameters, app_data)
        self._producers[producer.id] = producer
        self.router._producers[producer.id] = producer
        return producer

    async def consume(
        self,
        producer_id: str,
        rtp_capabilities: dict[str, Any],
        paused: bool = False,
    ) -> LocalConsumer:
        await asyncio.sleep(0)
        self._ensure_open()
        producer = self.router._producers.get(producer_id)
        if producer is None:
            raise MediaEngineError(f"producer {producer_id} not found")
        if not self.router.can_consume(producer_id, rtp_capabilities):
            raise MediaEngineError("cannot consume with the given rtpCapabilities")

        accepted = rtp_capabilities.get("codecs") or []
        codecs = [
            codec
            for codec in producer.rtp_parameters.get("codecs") or []
            if not _is_rtx(codec) and any(_codec_matches(codec, cap) for cap in accepted)
        ]
        rtp_parameters = {
            "mid": str(len(self._consumers)),
            "codecs": codecs,
            "headerExtensions": [],
            "encodings": [{"ssrc": secrets.randbelow(2**32)}],
            "rtcp": {"cname": secrets.token_hex(4), "reducedSize": True},
        }
        consumer = LocalConsumer(self, producer, rtp_parameters, paused)
        self._consumers[consumer.id] = consumer
        producer._consumers[consumer.id] = consumer
        return consumer

    def update_dtls_state(self, state: str) -> None:
        """Record a DTLS state change and notify observers."""

        if self.dtls_state == state:
            return
        self.dtls_state = state
        self._emit("dtlsstatechange", state)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for producer in list(self._producers.values()):
            producer._on_transport_closed()
        for consumer in list(self._consumers.values()):
            consumer._on_transport_closed()
        self.router._transports.pop(self.id, None)
        self.router.worker._release_port(self.port)


class LocalRouter:
    def __init__(self, worker: LocalWorker, media_codecs: list[dict[str, Any]]) -> None:
        self.id = str(uuid4())
        self.worker = worker
        self.closed = False
        self.rtp_capabilities = {
            "codecs": self._build_codecs(media_codecs),
            "headerExtensions": [],
        }
        self._transports: dict[str, LocalWebRtcTransport] = {}
        self._producers: dict[str, LocalProducer] = {}

    @staticmethod
    def _build_codecs(media_codecs: list[dict[str, Any]]) -> list[dict[str, Any]]:
        codecs: list[dict[str, Any]] = []
        payload_type = 100
        for codec in media_codecs:
            kind = codec.get("kind")
            if kind not in _MEDIA_KINDS or not _mime(codec).startswith(f"{kind}/"):
                raise MediaEngineError(f"invalid media codec {codec!r}")
            entry = dict(codec)
            entry.setdefault("parameters", {})
            entry.setdefault("rtcpFeedback", [])
            entry["preferredPayloadType"] = payload_type
            payload_type += 1
            codecs.append(entry)
        return codecs

    def can_consume(self, producer_id: str, rtp_capabilities: dict[str, Any]) -> bool:
        producer = self._producers.get(producer_id)
        if producer is None or producer.closed:
            return False
        if not isinstance(rtp_capabilities, dict):
            return False
        accepted = [cap for cap in rtp_capabilities.get("codecs") or [] if isinstance(cap, dict)]
        offered = [codec for codec in producer.rtp_parameters.get("codecs") or [] if not _is_rtx(codec)]
        return any(_codec_matches(codec, cap) for codec in offered for cap in accepted)

    async def create_webrtc_transport(
        self,
        *,
        listen_ip: str,
        announced_ip: str | None = None,
        enable_udp: bool = True,
        enable_tcp: bool = True,
        prefer_udp: bool = True,
        initial_available_outgoing_bitrate: int | None = None,
    ) -> LocalWebRtcTransport:
        await asyncio.sleep(0)
        if self.closed:
            raise MediaEngineError(f"router {self.id} is closed")
        if not (enable_udp or enable_tcp):
            raise MediaEngineError("at least one of UDP or TCP must be enabled")
        transport = LocalWebRtcTransport(
            self,
            ip=announced_ip or listen_ip,
            port=self.worker._allocate_port(),
            enable_udp=enable_udp,
            enable_tcp=enable_tcp,
            prefer_udp=prefer_udp,
            initial_available_outgoing_bitrate=initial_available_outgoing_bitrate,
        )
        self._transports[transport.id] = transport
        return transport

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for transport in list(self._transports.values()):
            transport.close()
        self.worker._routers.pop(self.id, None)


class LocalWorker(_Emitter):
    def __init__(self, rtc_min_port: int, rtc_max_port: int) -> None:
        super().__init__()
        self.pid = os.getpid()
        self.closed = False
        self._ports = range(rtc_min_port, rtc_max_port + 1)
        self._ports_in_use: set[int] = set()
        self._routers: dict[str, LocalRouter] = {}

    def _allocate_port(self) -> int:
        for port in self._ports:
            if port not in self._ports_in_use:
                self._ports_in_use.add(port)
                return port
        raise MediaEngineError("no more available ports")

    def _release_port(self, port: int) -> None:
        self._ports_in_use.discard(port)

    async def create_router(self, media_codecs: list[dict[str, Any]]) -> LocalRouter:
        await asyncio.sleep(0)
        if self.closed:
            raise MediaEngineError("worker is closed")
        router = LocalRouter(self, media_codecs)
        self._routers[router.id] = router
        return router

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        for router in list(self._routers.values()):
            router.close()

    def kill(self, reason: str = "worker terminated") -> None:
        """Simulate an unexpected worker death."""

        if self.closed:
            return
        self.close()
        self._emit("died", MediaEngineError(reason))


class LocalMediaEngine:
    async def create_worker(self, *, rtc_min_port: int, rtc_max_port: int) -> LocalWorker:
        if rtc_min_port > rtc_max_port:
            raise MediaEngineError("rtc_min_port must not exceed rtc_max_port")
        worker = LocalWorker(rtc_min_port, rtc_max_port)
        logger.debug("Local media worker ready with ports %d-%d", rtc_min_port, rtc_max_port)
        return worker
