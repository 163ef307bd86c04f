"""Data contracts for signaling requests, replies and push events."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CreateRoomRequest(_Payload):
    room_id: str = Field(..., min_length=1, max_length=128, description="Room to create")


class CreateRoomResponse(_Payload):
    room_id: str


class JoinRequest(_Payload):
    room_id: str = Field(..., min_length=1, max_length=128, description="Room to join")
    name: str = Field(..., min_length=1, max_length=128, description="Display name")


class CreateTransportRequest(_Payload):
    force_tcp: bool = Field(default=False, alias="forceTcp")
    producing: bool = Field(default=False, description="Direction hint: send transport")
    consuming: bool = Field(default=False, description="Direction hint: receive transport")


class TransportParams(_Payload):
    id: str
    ice_parameters: dict[str, Any] = Field(..., alias="iceParameters")
    ice_candidates: list[dict[str, Any]] = Field(..., alias="iceCandidates")
    dtls_parameters: dict[str, Any] = Field(..., alias="dtlsParameters")


class ConnectTransportRequest(_Payload):
    transport_id: str = Field(..., min_length=1)
    dtls_parameters: dict[str, Any] = Field(..., alias="dtlsParameters")


class ProduceRequest(_Payload):
    transport_id: str = Field(..., alias="producerTransportId", min_length=1)
    kind: Literal["audio", "video"]
    rtp_parameters: dict[str, Any] = Field(..., alias="rtpParameters")
    app_data: dict[str, Any] = Field(default_factory=dict, alias="appData")


class ProduceResponse(_Payload):
    producer_id: str


class ConsumeRequest(_Payload):
    transport_id: str = Field(..., alias="consumerTransportId", min_length=1)
    producer_id: str = Field(..., alias="producerId", min_length=1)
    rtp_capabilities: dict[str, Any] = Field(..., alias="rtpCapabilities")


class ConsumerParams(_Payload):
    id: str
    producer_id: str = Field(..., alias="producerId")
    kind: str
    rtp_parameters: dict[str, Any] = Field(..., alias="rtpParameters")
    type: str
    producer_paused: bool = Field(..., alias="producerPaused")


class ProducerClosedRequest(_Payload):
    producer_id: str = Field(..., min_length=1)


class ProducerAnnouncement(_Payload):
    producer_id: str = Field(..., alias="producerId")
    producer_peer_id: str = Field(..., alias="producerPeerId")


class ConsumerClosedEvent(_Payload):
    consumer_id: str


class PeerSummary(_Payload):
    id: str
    name: str


class RoomSnapshot(_Payload):
    id: str
    peers: list[PeerSummary]


class RoomSummary(_Payload):
    id: str
    state: str
    peers: int = Field(..., ge=0)
    producers: int = Field(..., ge=0)
