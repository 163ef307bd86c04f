from __future__ import annotations

import os
from typing import Any

import pytest
import pytest_asyncio

# Keep a developer's .env from leaking into unit tests.
os.environ.setdefault("APP_ENV", "test")

from meetroom.core.config import Settings  # noqa: E402
from meetroom.media.local import LocalMediaEngine, LocalWorker  # noqa: E402
from meetroom.services.peer import Peer  # noqa: E402
from meetroom.services.room import Room  # noqa: E402

VIDEO_RTP_PARAMETERS: dict[str, Any] = {
    "mid": "0",
    "codecs": [{"mimeType": "video/VP8", "payloadType": 101, "clockRate": 90000}],
    "encodings": [{"ssrc": 11111111}],
}

AUDIO_RTP_PARAMETERS: dict[str, Any] = {
    "mid": "1",
    "codecs": [{"mimeType": "audio/opus", "payloadType": 100, "clockRate": 48000, "channels": 2}],
    "encodings": [{"ssrc": 22222222}],
}

CLIENT_RTP_CAPABILITIES: dict[str, Any] = {
    "codecs": [
        {"kind": "audio", "mimeType": "audio/opus", "clockRate": 48000, "channels": 2},
        {"kind": "video", "mimeType": "video/VP8", "clockRate": 90000},
    ],
    "headerExtensions": [],
}

H264_ONLY_CAPABILITIES: dict[str, Any] = {
    "codecs": [{"kind": "video", "mimeType": "video/H264", "clockRate": 90000}],
    "headerExtensions": [],
}

DTLS_PARAMETERS: dict[str, Any] = {
    "role": "client",
    "fingerprints": [{"algorithm": "sha-256", "value": "AB:CD:EF"}],
}


class RecordingNotifier:
    """Stand-in for the connection manager; remembers every push."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, Any]] = []

    async def __call__(self, target_id: str, event: str, payload: Any) -> None:
        self.events.append((target_id, event, payload))

    def received(self, target_id: str, event: str | None = None) -> list[Any]:
        return [
            payload
            for target, name, payload in self.events
            if target == target_id and (event is None or name == event)
        ]


@pytest.fixture
def settings() -> Settings:
    return Settings(num_workers=2, rtc_min_port=40000, rtc_max_port=40049, router_ready_timeout=1.0)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def worker() -> LocalWorker:
    worker = await LocalMediaEngine().create_worker(rtc_min_port=40000, rtc_max_port=40049)
    yield worker
    worker.close()


@pytest_asyncio.fixture
async def room(worker: LocalWorker, notifier: RecordingNotifier, settings: Settings) -> Room:
    room = Room("room-1", worker, notifier, settings=settings)
    await room.wait_ready()
    yield room
    room.close()


async def join(room: Room, peer_id: str, name: str | None = None) -> Peer:
    peer = Peer(peer_id, name or peer_id)
    await room.add_peer(peer)
    return peer


async def open_transport(room: Room, peer_id: str) -> str:
    params = await room.create_webrtc_transport(peer_id)
    await room.connect_peer_transport(peer_id, params["id"], DTLS_PARAMETERS)
    return params["id"]
