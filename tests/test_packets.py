import json
import zlib
from typing import Any

import pytest
import structlog
from kotone.gateway.event import GatewayDispatch, IncomingGatewayEvent
from kotone.gateway.packets import PacketDispatcher
from kotone.gateway.session import GatewaySession
from stickney import WebsocketClosedError
from stickney.frame import BinaryMessage, TextualMessage

pytestmark = pytest.mark.anyio


class RecordingControl:
    shard_id = 0

    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.events: list[IncomingGatewayEvent] = []

    async def on_hello(self, heartbeat_interval: float) -> None:
        self.calls.append(("hello", heartbeat_interval))

    async def on_heartbeat_request(self) -> None:
        self.calls.append(("heartbeat",))

    def on_heartbeat_ack(self) -> None:
        self.calls.append(("ack",))

    async def on_reconnect_request(self) -> None:
        self.calls.append(("reconnect",))

    async def on_invalid_session(self, resumable: bool) -> None:
        self.calls.append(("invalid", resumable))

    def on_ready(self) -> None:
        self.calls.append(("ready", len(self.events)))

    def on_resumed(self) -> None:
        self.calls.append(("resumed", len(self.events)))

    async def emit(self, event: IncomingGatewayEvent) -> None:
        self.events.append(event)


@pytest.fixture
def control() -> RecordingControl:
    return RecordingControl()


@pytest.fixture
def session() -> GatewaySession:
    return GatewaySession()


@pytest.fixture
def packets(control: RecordingControl, session: GatewaySession) -> PacketDispatcher:
    return PacketDispatcher(control, session, structlog.get_logger())


async def test_control_opcodes(packets: PacketDispatcher, control: RecordingControl):
    await packets.dispatch_packet({"op": 10, "d": {"heartbeat_interval": 41250}})
    await packets.dispatch_packet({"op": 1, "d": None})
    await packets.dispatch_packet({"op": 11})
    await packets.dispatch_packet({"op": 9, "d": True})
    await packets.dispatch_packet({"op": 7, "d": None})

    assert control.calls == [
        ("hello", 41.25),
        ("heartbeat",),
        ("ack",),
        ("invalid", True),
        ("reconnect",),
    ]


async def test_unknown_opcodes_are_ignored(packets: PacketDispatcher, control: RecordingControl):
    await packets.dispatch_packet({"op": 99, "d": None})
    await packets.dispatch_packet({"d": None})

    assert control.calls == []
    assert control.events == []


async def test_ready_issues_a_session(
    packets: PacketDispatcher, control: RecordingControl, session: GatewaySession
):
    await packets.dispatch_packet(
        {
            "op": 0,
            "t": "READY",
            "s": 1,
            "d": {"session_id": "abc", "resume_gateway_url": "wss://resume.test", "guilds": []},
        }
    )

    assert session.session_id == "abc"
    assert session.resume_url == "wss://resume.test"
    assert session.sequence == 1

    # the connection hears about it before anyone else does.
    assert control.calls == [("ready", 0)]
    (event,) = control.events
    assert isinstance(event, GatewayDispatch)
    assert event.event_name == "READY"


async def test_resumed_keeps_the_session(
    packets: PacketDispatcher, control: RecordingControl, session: GatewaySession
):
    session.replace(session_id="abc", resume_url=None, sequence=10)
    await packets.dispatch_packet({"op": 0, "t": "RESUMED", "s": 11, "d": {}})

    assert control.calls == [("resumed", 0)]
    assert session.session_id == "abc"
    assert session.sequence == 11


async def test_sequence_going_backwards(packets: PacketDispatcher, session: GatewaySession):
    await packets.dispatch_packet({"op": 0, "t": "MESSAGE_CREATE", "s": 5, "d": {}})
    await packets.dispatch_packet({"op": 0, "t": "MESSAGE_CREATE", "s": 4, "d": {}})

    assert session.sequence == 5


async def test_presences_replace_fans_out_in_order(
    packets: PacketDispatcher, control: RecordingControl
):
    records = [{"user": {"id": str(i)}, "status": "online"} for i in range(3)]
    await packets.dispatch_packet({"op": 0, "t": "PRESENCES_REPLACE", "s": 7, "d": records})

    assert [e.event_name for e in control.events] == ["PRESENCE_UPDATE"] * 3
    assert [e.body for e in control.events] == records
    assert all(e.sequence == 7 for e in control.events)


async def test_presences_replace_uses_the_presence_handler(
    packets: PacketDispatcher, control: RecordingControl
):
    seen: list[str] = []

    async def handle_presence(event: GatewayDispatch) -> None:
        seen.append(event.body["user"]["id"])

    packets.register("PRESENCE_UPDATE", handle_presence)
    await packets.dispatch_packet(
        {
            "op": 0,
            "t": "PRESENCES_REPLACE",
            "s": 2,
            "d": [{"user": {"id": "1"}}, {"user": {"id": "2"}}],
        }
    )

    assert seen == ["1", "2"]
    assert control.events == []


async def test_empty_presences_replace(packets: PacketDispatcher, control: RecordingControl):
    await packets.dispatch_packet({"op": 0, "t": "PRESENCES_REPLACE", "s": 2, "d": []})

    assert control.events == []


async def test_message_decoding(packets: PacketDispatcher, control: RecordingControl):
    payload = {"op": 0, "t": "TYPING_START", "s": 1, "d": {"channel_id": "1"}}

    await packets.dispatch(TextualMessage(json.dumps(payload)))
    await packets.dispatch(BinaryMessage(zlib.compress(json.dumps(payload).encode("utf-8"))))

    assert [e.event_name for e in control.events] == ["TYPING_START", "TYPING_START"]


@pytest.mark.parametrize(
    "message",
    [
        TextualMessage("not json {"),
        TextualMessage("[1, 2, 3]"),
        BinaryMessage(b"definitely not zlib"),
    ],
)
async def test_undecodable_messages_close_the_connection(
    packets: PacketDispatcher, control: RecordingControl, message: Any
):
    with pytest.raises(WebsocketClosedError) as exc_info:
        await packets.dispatch(message)

    assert exc_info.value.code == 1002
    assert control.calls == []


@pytest.mark.parametrize(
    "packet",
    [
        {"op": 10, "d": None},
        {"op": 10, "d": {}},
        {"op": 0, "s": 1, "d": {}},
        {"op": 0, "t": "MESSAGE_CREATE", "s": "one", "d": {}},
        {"op": 0, "t": "READY", "s": 1, "d": {"guilds": []}},
        {"op": 0, "t": "PRESENCES_REPLACE", "s": 1, "d": {"user": {"id": "1"}}},
    ],
)
async def test_badly_shaped_packets_close_the_connection(
    packets: PacketDispatcher, control: RecordingControl, packet: dict[str, Any]
):
    with pytest.raises(WebsocketClosedError) as exc_info:
        await packets.dispatch_packet(packet)

    assert exc_info.value.code == 1002
    assert control.calls == []
