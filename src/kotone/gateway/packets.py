from __future__ import annotations

import enum
import json
import zlib
from collections.abc import Awaitable, Callable
from typing import Any, NoReturn, Protocol, TypeAlias

import structlog
from stickney import WebsocketClosedError
from stickney.frame import BinaryMessage, TextualMessage

from kotone.gateway.event import GatewayDispatch, IncomingGatewayEvent
from kotone.gateway.session import GatewaySession

DispatchHandler: TypeAlias = Callable[[GatewayDispatch], Awaitable[None]]

#: The code a connection is considered closed with after the gateway sends garbage.
MALFORMED_PACKET_CODE = 1002


class GatewayOp(enum.IntEnum):
    """
    An enumeration of possible gateway operation codes.
    """

    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    PRESENCE = 3
    VOICE_STATE = 4
    RESUME = 6
    RECONNECT = 7
    REQUEST_MEMBERS = 8
    INVALIDATE_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


class ConnectionControl(Protocol):
    """
    The half of a gateway connection that control packets drive.
    """

    shard_id: int

    async def on_hello(self, heartbeat_interval: float) -> None:
        ...

    async def on_heartbeat_request(self) -> None:
        ...

    def on_heartbeat_ack(self) -> None:
        ...

    async def on_reconnect_request(self) -> None:
        ...

    async def on_invalid_session(self, resumable: bool) -> None:
        ...

    def on_ready(self) -> None:
        ...

    def on_resumed(self) -> None:
        ...

    async def emit(self, event: IncomingGatewayEvent) -> None:
        ...


def _malformed(reason: str) -> NoReturn:
    # resuming replays anything we drop here, so treat it like any other broken connection.
    raise WebsocketClosedError(MALFORMED_PACKET_CODE, f"Malformed packet: {reason}")


def decode_message(message: TextualMessage | BinaryMessage) -> dict[str, Any]:
    """
    Decodes a single gateway packet from a websocket message.

    Text messages are plain JSON. Binary messages are payload compressed JSON; transport
    compression (which compresses *every* message as one stream) isn't supported.

    :raises WebsocketClosedError: If the message isn't a valid gateway packet.
    """

    try:
        if isinstance(message, TextualMessage):
            packet = json.loads(message.body)
        else:
            packet = json.loads(zlib.decompress(message.body))
    except (ValueError, zlib.error) as e:
        raise WebsocketClosedError(MALFORMED_PACKET_CODE, "Undecodable packet") from e

    if not isinstance(packet, dict):
        _malformed(f"expected an object, got {type(packet).__name__}")

    return packet


class PacketDispatcher:
    """
    Decodes inbound gateway packets and routes them. Control packets drive the owning connection;
    dispatch packets are routed to a handler by event name.

    Every dispatch that has no specific handler is forwarded as-is to the connection's event
    channel, where the event parser decides what it knows about. Handlers for a specific name can
    be replaced with :meth:`.register`.
    """

    def __init__(
        self,
        control: ConnectionControl,
        session: GatewaySession,
        logger: structlog.stdlib.BoundLogger,
    ) -> None:
        self._control = control
        self._session = session
        self.logger = logger

        self._handlers: dict[str, DispatchHandler] = {
            "READY": self._handle_ready,
            "RESUMED": self._handle_resumed,
            "PRESENCES_REPLACE": self._handle_presences_replace,
        }

    def register(self, event_name: str, handler: DispatchHandler) -> None:
        """
        Registers the handler for a single named dispatch event, replacing the previous one.
        """

        self._handlers[event_name] = handler

    async def _forward(self, event: GatewayDispatch) -> None:
        await self._control.emit(event)

    async def _handle_ready(self, event: GatewayDispatch) -> None:
        if not isinstance(event.body, dict) or "session_id" not in event.body:
            _malformed("READY without a session id")

        self._session.replace(
            session_id=event.body["session_id"],
            resume_url=event.body.get("resume_gateway_url"),
            sequence=event.sequence or 0,
        )

        user = event.body.get("user", {})
        self.logger.debug("Issued session", username=user.get("username"), id=user.get("id"))

        self._control.on_ready()
        await self._forward(event)

    async def _handle_resumed(self, event: GatewayDispatch) -> None:
        self.logger.debug("Resumed session", seq=self._session.sequence)

        self._control.on_resumed()
        await self._forward(event)

    async def _handle_presences_replace(self, event: GatewayDispatch) -> None:
        # one packet, many presences. each one goes through the PRESENCE_UPDATE handler exactly as
        # if it had come in as its own packet, in list order, before the next packet is read.
        if not isinstance(event.body, list):
            _malformed("PRESENCES_REPLACE without a list of presences")

        for record in event.body:
            synthesised = GatewayDispatch(
                shard_id=event.shard_id,
                event_name="PRESENCE_UPDATE",
                sequence=event.sequence,
                body=record,
            )
            await self.handle_dispatch(synthesised)

    async def handle_dispatch(self, event: GatewayDispatch) -> None:
        """
        Routes a single dispatch event to the handler for its name.
        """

        handler = self._handlers.get(event.event_name, self._forward)
        await handler(event)

    async def dispatch(self, message: TextualMessage | BinaryMessage) -> None:
        """
        Handles a single raw message from the gateway. All of the effects of the message,
        including any synthesised events, have happened by the time this returns.
        """

        self.logger.debug(
            "Inbound websocket",
            type="text" if isinstance(message, TextualMessage) else "binary",
            size=len(message.body),
        )
        packet = decode_message(message)
        await self.dispatch_packet(packet)

    async def dispatch_packet(self, packet: dict[str, Any]) -> None:
        """
        Handles a single decoded packet from the gateway.
        """

        try:
            opcode = GatewayOp(packet.get("op"))
        except ValueError:
            self.logger.warning("Unknown opcode", opcode=packet.get("op"))
            return

        raw_data: Any = packet.get("d")

        # The "core" of any bot, the gateway operation switch.
        match opcode:
            case GatewayOp.HELLO:
                if not isinstance(raw_data, dict):
                    _malformed("HELLO without a body")

                interval = raw_data.get("heartbeat_interval")
                if not isinstance(interval, int | float):
                    _malformed("HELLO without a heartbeat interval")

                interval /= 1000.0
                self.logger.debug(
                    "Inbound message", message_type=GatewayOp.HELLO, heartbeat_interval=interval
                )
                await self._control.on_hello(interval)

            case GatewayOp.HEARTBEAT:
                self.logger.debug(
                    "Inbound message", message_type=GatewayOp.HEARTBEAT, seq=self._session.sequence
                )
                await self._control.on_heartbeat_request()

            case GatewayOp.HEARTBEAT_ACK:
                self.logger.debug("Inbound message", message_type=GatewayOp.HEARTBEAT_ACK)
                self._control.on_heartbeat_ack()

            case GatewayOp.RECONNECT:
                self.logger.debug("Inbound message", message_type=GatewayOp.RECONNECT)
                await self._control.on_reconnect_request()

            case GatewayOp.INVALIDATE_SESSION:
                self.logger.debug(
                    "Inbound message",
                    message_type=GatewayOp.INVALIDATE_SESSION,
                    resumable=raw_data,
                )
                await self._control.on_invalid_session(bool(raw_data))

            case GatewayOp.DISPATCH:
                seq: int | None = packet.get("s")
                dispatch_name = packet.get("t")
                if not isinstance(dispatch_name, str) or not isinstance(seq, int | None):
                    _malformed("DISPATCH without an event name or with a bad sequence")

                if not self._session.advance(seq):
                    self.logger.warning(
                        "Sequence went backwards", seq=seq, last_seq=self._session.sequence
                    )

                self.logger.debug(
                    "Inbound message",
                    message_type=GatewayOp.DISPATCH,
                    dispatched_event=dispatch_name,
                    seq=seq,
                )

                await self.handle_dispatch(
                    GatewayDispatch(
                        shard_id=self._control.shard_id,
                        event_name=dispatch_name,
                        sequence=seq,
                        body=raw_data,
                    )
                )

            case _:
                self.logger.warning("Unexpected opcode", opcode=opcode)
