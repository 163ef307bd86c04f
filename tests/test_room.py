"""Tests for room session state and event fan-out."""
from __future__ import annotations

import asyncio

import pytest

from conftest import (
    AUDIO_RTP_PARAMETERS,
    CLIENT_RTP_CAPABILITIES,
    H264_ONLY_CAPABILITIES,
    VIDEO_RTP_PARAMETERS,
    join,
    open_transport,
)
from meetroom.media.engine import MediaEngineError
from meetroom.services.errors import EngineFailure, PeerNotFound, RoomNotFound, RouterNotReady
from meetroom.services.peer import Peer
from meetroom.services.room import Room, RoomState


@pytest.mark.asyncio
async def test_router_becomes_ready(worker, notifier, settings):
    room = Room("pending", worker, notifier, settings=settings)
    assert room.state is RoomState.UNINITIALIZED
    assert room.get_router_rtp_capabilities() is None

    await room.wait_ready()

    assert room.state is RoomState.READY
    assert room.get_router_rtp_capabilities()["codecs"]
    room.close()


@pytest.mark.asyncio
async def test_router_failure_reports_not_ready(notifier, settings):
    class BrokenWorker:
        pid = 1

        def on(self, event, handler):
            pass

        async def create_router(self, media_codecs):
            raise MediaEngineError("no router today")

    room = Room("broken", BrokenWorker(), notifier, settings=settings)

    with pytest.raises(RouterNotReady):
        await room.wait_ready()
    with pytest.raises(RouterNotReady):
        await room.create_webrtc_transport("a")


@pytest.mark.asyncio
async def test_transport_for_unknown_peer_fails(room):
    with pytest.raises(PeerNotFound):
        await room.create_webrtc_transport("ghost")


@pytest.mark.asyncio
async def test_transport_params_and_bitrate(room, settings):
    peer = await join(room, "a", "alice")

    params = await room.create_webrtc_transport("a")

    assert set(params) == {"id", "iceParameters", "iceCandidates", "dtlsParameters"}
    transport = peer.transports[params["id"]]
    assert transport.max_incoming_bitrate == settings.max_incoming_bitrate


@pytest.mark.asyncio
async def test_force_tcp_drops_udp_candidates(room):
    await join(room, "a")

    params = await room.create_webrtc_transport("a", force_tcp=True)

    assert [candidate["protocol"] for candidate in params["iceCandidates"]] == ["tcp"]


@pytest.mark.asyncio
async def test_connect_unknown_peer_or_transport_is_noop(room):
    await join(room, "a")

    await room.connect_peer_transport("ghost", "t-1", {})
    await room.connect_peer_transport("a", "t-1", {})


@pytest.mark.asyncio
async def test_dtls_closed_closes_and_deregisters_transport(room):
    peer = await join(room, "a")
    transport_id = await open_transport(room, "a")
    transport = peer.transports[transport_id]

    transport.update_dtls_state("closed")

    assert transport.closed
    assert transport_id not in peer.transports


@pytest.mark.asyncio
async def test_produce_broadcasts_to_other_peers_only(room, notifier):
    await join(room, "a")
    await join(room, "b")
    await join(room, "c")
    transport_id = await open_transport(room, "a")

    producer_id = await room.produce("a", transport_id, VIDEO_RTP_PARAMETERS, "video")

    expected = [[{"producerId": producer_id, "producerPeerId": "a"}]]
    assert notifier.received("b", "newProducers") == expected
    assert notifier.received("c", "newProducers") == expected
    assert notifier.received("a") == []


@pytest.mark.asyncio
async def test_new_producer_is_listed_before_announcement(room, notifier):
    await join(room, "a")
    await join(room, "b")
    transport_id = await open_transport(room, "a")
    snapshots: list[list[dict]] = []

    async def notify(target_id, event, payload):
        snapshots.append(room.get_producer_list_for_peer())
        await notifier(target_id, event, payload)

    room._notify = notify

    producer_id = await room.produce("a", transport_id, AUDIO_RTP_PARAMETERS, "audio")

    assert snapshots == [[{"producerId": producer_id, "producerPeerId": "a"}]]


@pytest.mark.asyncio
async def test_late_joiner_sees_existing_producers(room):
    await join(room, "a")
    transport_id = await open_transport(room, "a")
    producer_id = await room.produce("a", transport_id, VIDEO_RTP_PARAMETERS, "video")

    await join(room, "b")

    assert room.get_producer_list_for_peer() == [{"producerId": producer_id, "producerPeerId": "a"}]


@pytest.mark.asyncio
async def test_failed_produce_does_not_broadcast(room, notifier):
    await join(room, "a")
    await join(room, "b")
    transport_id = await open_transport(room, "a")

    with pytest.raises(EngineFailure):
        await room.produce("a", transport_id, {"codecs": [{"mimeType": "video/AV1"}]}, "video")

    assert notifier.events == []
    assert room.get_producer_list_for_peer() == []


@pytest.mark.asyncio
async def test_incompatible_consume_is_declined_without_consumer(room):
    await join(room, "a")
    consumer_peer = await join(room, "b")
    send_id = await open_transport(room, "a")
    recv_id = await open_transport(room, "b")
    producer_id = await room.produce("a", send_id, VIDEO_RTP_PARAMETERS, "video")

    result = await room.consume("b", recv_id, producer_id, H264_ONLY_CAPABILITIES)

    assert result is None
    assert consumer_peer.consumers == {}


@pytest.mark.asyncio
async def test_consume_unknown_producer_is_declined(room):
    await join(room, "b")
    recv_id = await open_transport(room, "b")

    assert await room.consume("b", recv_id, "missing", CLIENT_RTP_CAPABILITIES) is None


@pytest.mark.asyncio
async def test_consume_returns_params(room):
    await join(room, "a")
    consumer_peer = await join(room, "b")
    send_id = await open_transport(room, "a")
    recv_id = await open_transport(room, "b")
    producer_id = await room.produce("a", send_id, VIDEO_RTP_PARAMETERS, "video")

    params = await room.consume("b", recv_id, producer_id, CLIENT_RTP_CAPABILITIES)

    assert params["producerId"] == producer_id
    assert params["id"] in consumer_peer.consumers


@pytest.mark.asyncio
async def test_disconnect_sends_single_consumer_closed(room, notifier):
    await join(room, "a")
    consumer_peer = await join(room, "b")
    send_id = await open_transport(room, "a")
    recv_id = await open_transport(room, "b")
    producer_id = await room.produce("a", send_id, VIDEO_RTP_PARAMETERS, "video")
    params = await room.consume("b", recv_id, producer_id, CLIENT_RTP_CAPABILITIES)

    await room.remove_peer("a")
    await room.drain()

    assert notifier.received("b", "consumerClosed") == [{"consumer_id": params["id"]}]
    assert params["id"] not in consumer_peer.consumers
    assert list(room.peers) == ["b"]


@pytest.mark.asyncio
async def test_close_producer_notifies_consumers_not_room(room, notifier):
    await join(room, "a")
    await join(room, "b")
    await join(room, "c")
    send_id = await open_transport(room, "a")
    recv_id = await open_transport(room, "b")
    producer_id = await room.produce("a", send_id, AUDIO_RTP_PARAMETERS, "audio")
    params = await room.consume("b", recv_id, producer_id, CLIENT_RTP_CAPABILITIES)
    notifier.events.clear()

    room.close_producer("a", producer_id)
    room.close_producer("a", producer_id)
    room.close_producer("ghost", producer_id)
    await room.drain()

    assert notifier.events == [("b", "consumerClosed", {"consumer_id": params["id"]})]
    assert room.get_producer_list_for_peer() == []


@pytest.mark.asyncio
async def test_remove_unknown_peer_is_noop(room):
    await join(room, "a")

    assert await room.remove_peer("ghost") is None
    assert list(room.peers) == ["a"]


@pytest.mark.asyncio
async def test_room_becomes_empty_after_last_peer(room):
    await join(room, "a")
    assert room.state is RoomState.READY

    removed = await room.remove_peer("a")

    assert removed.closed
    assert room.state is RoomState.EMPTY


@pytest.mark.asyncio
async def test_closed_room_refuses_peers(room):
    room.close()

    with pytest.raises(RoomNotFound):
        await room.add_peer(Peer("a", "alice"))
    assert room.state is RoomState.EMPTY


@pytest.mark.asyncio
async def test_concurrent_produce_and_remove_keep_maps_consistent(room, notifier):
    await join(room, "a")
    await join(room, "b")
    transport_id = await open_transport(room, "a")

    results = await asyncio.gather(
        room.produce("a", transport_id, AUDIO_RTP_PARAMETERS, "audio"),
        room.remove_peer("a"),
        return_exceptions=True,
    )

    assert "a" not in room.peers
    assert room.get_producer_list_for_peer() == []
    assert isinstance(results[0], Exception)


def test_snapshot_shape():
    room = Room.__new__(Room)
    room.id = "r"
    room.peers = {"a": Peer("a", "alice")}

    assert room.to_json() == {"id": "r", "peers": [{"id": "a", "name": "alice"}]}
