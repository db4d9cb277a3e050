"""Envelope decoding, handler routing and per-frame fault isolation."""

from __future__ import annotations

import json

import pytest

from liveroom.monitoring.metrics import signaling_dropped_total, signaling_messages_total
from liveroom.realtime import Dispatcher

from support import DummyWebSocket

pytestmark = pytest.mark.anyio


def frame(message_type: str, payload: dict | None = None) -> str:
    return json.dumps({"type": message_type, "payload": payload or {}})


@pytest.fixture()
def dispatcher(hub) -> Dispatcher:
    return Dispatcher(hub)


@pytest.fixture()
async def fresh(hub):
    websocket = DummyWebSocket()
    connection = await hub.connect(websocket)
    return connection, websocket


async def test_register_replies_with_identity_and_ice_servers(dispatcher, fresh) -> None:
    connection, websocket = fresh

    assert await dispatcher.dispatch(connection, frame("register", {"identity": "bc1", "username": "Ann"}))

    assert websocket.sent == [
        {
            "type": "registered",
            "payload": {
                "identity": "bc1",
                "iceServers": [{"urls": ["stun:stun.example.org:3478"]}],
            },
        }
    ]
    assert connection.identity == "bc1"
    assert connection.username == "Ann"


@pytest.mark.parametrize(
    "payload",
    [{}, {"identity": "bc1"}, {"username": "Ann"}, {"identity": "  ", "username": "Ann"}],
)
async def test_incomplete_register_is_dropped_silently(
    dispatcher, fresh, payload, reset_metrics
) -> None:
    connection, websocket = fresh

    assert not await dispatcher.dispatch(connection, frame("register", payload))

    assert websocket.sent == []
    assert connection.identity is None
    assert signaling_dropped_total.value("register", "VALIDATION_FAILED") == 1


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"payload": {}}', '{"type": ""}', b"\xff"])
async def test_malformed_frames_are_dropped(dispatcher, fresh, raw, reset_metrics) -> None:
    connection, websocket = fresh

    assert not await dispatcher.dispatch(connection, raw)

    assert websocket.sent == []
    assert signaling_dropped_total.value("unknown", "MALFORMED_MESSAGE") == 1


async def test_unknown_type_is_dropped(dispatcher, fresh, reset_metrics) -> None:
    connection, websocket = fresh

    assert not await dispatcher.dispatch(connection, frame("teleport"))

    assert websocket.sent == []
    assert signaling_dropped_total.value("unknown", "UNKNOWN_TYPE") == 1


async def test_null_payload_is_treated_as_empty(dispatcher, fresh) -> None:
    connection, websocket = fresh

    assert await dispatcher.dispatch(connection, json.dumps({"type": "list-rooms", "payload": None}))

    assert websocket.sent == [{"type": "room-list", "payload": []}]


async def test_join_failures_carry_error_codes(dispatcher, hub, open_peer) -> None:
    bc1 = await open_peer("bc1")
    await dispatcher.dispatch(bc1.connection, frame("create-room", {"roomName": "Locked", "password": "pw"}))
    room_id = bc1.websocket.of_type("room-created")[0]["roomId"]
    v1 = await open_peer("v1")

    await dispatcher.dispatch(v1.connection, frame("join-room", {"roomId": "missing"}))
    await dispatcher.dispatch(v1.connection, frame("join-room", {"roomId": room_id, "password": "no"}))
    await dispatcher.dispatch(bc1.connection, frame("join-room", {"roomId": room_id, "password": "pw"}))

    assert [error["code"] for error in v1.websocket.of_type("error")] == [
        "ROOM_NOT_FOUND",
        "PASSWORD_INCORRECT",
    ]
    assert bc1.websocket.of_type("error")[0]["code"] == "INVALID_STATE"
    assert all(error["message"] for error in v1.websocket.of_type("error"))


async def test_full_room_flow_through_dispatcher(dispatcher, hub, open_peer) -> None:
    bc1 = await open_peer("bc1")
    v1 = await open_peer("v1")

    await dispatcher.dispatch(bc1.connection, frame("create-room", {"roomName": "Show"}))
    room_id = bc1.websocket.of_type("room-created")[0]["roomId"]
    await dispatcher.dispatch(v1.connection, frame("list-rooms"))
    await dispatcher.dispatch(v1.connection, frame("join-room", {"roomId": room_id}))
    await dispatcher.dispatch(bc1.connection, frame("offer", {"targetId": "v1", "sdp": "o"}))
    await dispatcher.dispatch(v1.connection, frame("answer", {"targetId": "bc1", "sdp": "a"}))
    await dispatcher.dispatch(bc1.connection, frame("mute-viewer", {"targetId": "v1"}))
    await dispatcher.dispatch(bc1.connection, frame("live.anchor.mute", {"anchorId": "bc1"}))
    await dispatcher.dispatch(v1.connection, frame("leave-room"))

    assert v1.websocket.types() == [
        "room-list",
        "joined-room",
        "offer",
        "viewer-muted-status",
        "live.anchor.mute",
    ]
    assert v1.websocket.of_type("room-list")[0][0]["roomName"] == "Show"
    assert bc1.websocket.types() == [
        "room-created",
        "new-viewer",
        "answer",
        "viewer-muted-status",
        "viewer-left",
    ]


async def test_rejoin_only_updates_password_when_present(dispatcher, hub, open_peer) -> None:
    bc1 = await open_peer("bc1")
    await dispatcher.dispatch(bc1.connection, frame("create-room", {"roomName": "Show", "password": "pw"}))
    room_id = bc1.websocket.of_type("room-created")[0]["roomId"]

    await dispatcher.dispatch(bc1.connection, frame("rejoin-room", {"roomId": room_id, "roomName": "Show"}))
    assert hub.rooms.get(room_id).is_password_protected

    await dispatcher.dispatch(
        bc1.connection, frame("rejoin-room", {"roomId": room_id, "roomName": "Show", "password": None})
    )
    assert not hub.rooms.get(room_id).is_password_protected


async def test_unauthorized_actions_produce_no_reply(dispatcher, hub, open_peer, reset_metrics) -> None:
    bc1 = await open_peer("bc1")
    await dispatcher.dispatch(bc1.connection, frame("create-room", {"roomName": "Show"}))
    room_id = bc1.websocket.of_type("room-created")[0]["roomId"]
    v1 = await open_peer("v1")
    v2 = await open_peer("v2")
    await dispatcher.dispatch(v1.connection, frame("join-room", {"roomId": room_id}))
    await dispatcher.dispatch(v2.connection, frame("join-room", {"roomId": room_id}))
    v2.websocket.sent.clear()

    assert not await dispatcher.dispatch(v2.connection, frame("kick-user", {"targetId": "v1"}))
    assert not await dispatcher.dispatch(v2.connection, frame("mute-viewer", {"targetId": "v1"}))

    assert v2.websocket.sent == []
    assert signaling_dropped_total.value("kick-user", "UNAUTHORIZED") == 1
    assert signaling_dropped_total.value("mute-viewer", "UNAUTHORIZED") == 1


async def test_handler_crash_is_contained(dispatcher, hub, open_peer, monkeypatch, reset_metrics) -> None:
    bc1 = await open_peer("bc1")

    async def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(hub, "list_rooms", explode)

    assert not await dispatcher.dispatch(bc1.connection, frame("list-rooms"))
    assert signaling_dropped_total.value("list-rooms", "INTERNAL_ERROR") == 1

    monkeypatch.undo()
    assert await dispatcher.dispatch(bc1.connection, frame("list-rooms"))
    assert bc1.websocket.types() == ["room-list"]


async def test_ping_gets_pong(dispatcher, fresh, reset_metrics) -> None:
    connection, websocket = fresh

    assert await dispatcher.dispatch(connection, frame("ping"))

    assert websocket.sent == [{"type": "pong", "payload": {}}]
    assert signaling_messages_total.value("ping", "in") == 1


async def test_unregistered_connection_cannot_create_room(dispatcher, hub, fresh) -> None:
    connection, websocket = fresh

    assert not await dispatcher.dispatch(connection, frame("create-room", {"roomName": "Show"}))

    assert websocket.sent == []
    assert len(hub.rooms) == 0


def test_dispatcher_knows_every_protocol_message(dispatcher) -> None:
    assert {
        "register",
        "create-room",
        "rejoin-room",
        "list-rooms",
        "join-room",
        "leave-room",
        "offer",
        "answer",
        "candidate",
        "mute-viewer",
        "unmute-viewer",
        "kick-user",
        "live.anchor.mute",
        "live.anchor.unmute",
    } <= dispatcher.message_types


async def test_missing_room_id_is_answered_as_unknown_room(dispatcher, hub, open_peer) -> None:
    v1 = await open_peer("v1")
    bc1 = await open_peer("bc1")

    assert await dispatcher.dispatch(v1.connection, frame("join-room"))
    assert await dispatcher.dispatch(bc1.connection, frame("rejoin-room", {"roomName": "Show"}))

    assert v1.websocket.types() == ["error"]
    assert v1.websocket.of_type("error")[0]["code"] == "ROOM_NOT_FOUND"
    assert bc1.websocket.types() == ["rejoin-room-failed"]
    assert len(hub.rooms) == 0
