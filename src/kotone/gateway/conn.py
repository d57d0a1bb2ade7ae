from __future__ import annotations

import contextlib
import enum
import json
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from functools import partial
from typing import Any, NoReturn, TypeAlias

import anyio
import httpx
import structlog
from anyio import WouldBlock
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from stickney import WebsocketClient, WebsocketClosedError, WsMessage, open_ws_connection
from stickney.exc import WebsocketStateMachineError
from stickney.frame import BinaryMessage, CloseMessage, PingMessage, PongMessage, TextualMessage

from kotone.config import ClientOptions
from kotone.exc import GatewayError, GatewayFatalError, SessionInvalidatedError
from kotone.gateway.event import (
    GatewayDisconnected,
    GatewayHeartbeatAck,
    GatewayHeartbeatSent,
    GatewayHello,
    GatewayInvalidateSession,
    GatewayPresenceUpdate,
    GatewayReconnectRequested,
    IncomingGatewayEvent,
    OutgoingGatewayEvent,
)
from kotone.gateway.heartbeat import HeartbeatTimer
from kotone.gateway.packets import GatewayOp, PacketDispatcher
from kotone.gateway.session import GatewaySession
from kotone.models.presence import Activity
from kotone.serialise import CONVERTER

PRIVILEGED_INTENTS_MESSAGE = (
    "Kotone requires privileged intents to function properly. "
    "Please make sure that they are enabled in your bot page."
)

#: Close codes after which reconnecting is pointless.
FATAL_CLOSE_CODES: dict[int, str] = {
    4004: "Authentication failed",
    4010: "Invalid shard",
    4011: "Sharding required",
    4012: "Invalid API version",
    4013: "Invalid intents",
    4014: PRIVILEGED_INTENTS_MESSAGE,
}

#: The close code used when the gateway stops acknowledging our heartbeats.
ZOMBIE_CLOSE_CODE = 4100

Connector: TypeAlias = Callable[[str], AbstractAsyncContextManager[WebsocketClient]]

#: Errors that mean the websocket itself is gone, rather than anything being wrong with us.
TRANSPORT_ERRORS = (
    OSError,
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
    anyio.EndOfStream,
    WebsocketStateMachineError,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(name=__name__)


def _closed_by(group: BaseExceptionGroup) -> WebsocketClosedError:
    error: BaseException = group
    while isinstance(error, BaseExceptionGroup):
        error = error.exceptions[0]

    if isinstance(error, WebsocketClosedError):
        return error

    return WebsocketClosedError(1006, str(error) or type(error).__name__)


# Design notes.
# This is a CSP-based gateway system, using three tasks/processes.
# 1) The Incoming pumper, which receives new messages from the websocket constantly.
# 2) The Outgoing pumper, which receives messages that the client wants to send.
# 3) The super-loop, which waits on both and on the heartbeat deadline, and feeds packets to the
#    packet dispatcher in arrival order.
#
# This is then wrapped in an automatic reconnection layer to isolate error handling. The
# GatewayConnection object lives for as long as the shard does; websockets come and go underneath
# it, and the session survives them unless the gateway says otherwise.


class GatewayState(enum.Enum):
    """
    The lifecycle states of a single shard's gateway connection.
    """

    #: Opening a new websocket.
    CONNECTING = "connecting"

    #: Sent an IDENTIFY, waiting for READY.
    IDENTIFYING = "identifying"

    #: Sent a RESUME, waiting for RESUMED.
    RESUMING = "resuming"

    #: A freshly identified session is running.
    READY = "ready"

    #: A resumed session is running.
    RESUMED = "resumed"

    #: The websocket went away and is about to be reopened.
    RECONNECTING = "reconnecting"

    #: Terminal; the shard was shut down or failed unrecoverably.
    CLOSED = "closed"


class GatewaySenderWrapper:
    """
    Wraps several common operations for sending on the gateway.
    """

    def __init__(self, ws: WebsocketClient, logger: structlog.stdlib.BoundLogger) -> None:
        self._ws = ws
        self.logger = logger

    async def send_heartbeat(self, *, seq: int) -> None:
        self.logger.debug(
            "Outgoing message",
            message_type=GatewayOp.HEARTBEAT,
            seq=seq,
        )

        body = {"op": GatewayOp.HEARTBEAT, "d": seq}

        await self._ws.send_message(json.dumps(body))

    async def send_identify(
        self,
        *,
        token: str,
        shard_id: int,
        shard_count: int,
        intents: int,
        large_threshold: int,
    ) -> None:
        self.logger.debug("Outgoing message", message_type=GatewayOp.IDENTIFY)

        body = {
            "op": GatewayOp.IDENTIFY,
            "d": {
                "token": token,
                "properties": {"os": "System V", "browser": "Kotone", "device": "Kotone"},
                "compress": True,
                "shard": [shard_id, shard_count],
                "intents": intents,
                "large_threshold": large_threshold,
            },
        }

        await self._ws.send_message(json.dumps(body))

    async def send_resume(self, *, token: str, session_id: str, seq: int) -> None:
        self.logger.debug(
            "Outgoing message",
            message_type=GatewayOp.RESUME,
            seq=seq,
        )

        body = {
            "op": GatewayOp.RESUME,
            "d": {
                "token": token,
                "session_id": session_id,
                "seq": seq,
            },
        }

        await self._ws.send_message(json.dumps(body))

    async def send_presence(self, payload: GatewayPresenceUpdate) -> None:
        self.logger.debug(
            "Outgoing message",
            message_type=GatewayOp.PRESENCE,
            status=payload.status,
        )

        body = {
            "op": GatewayOp.PRESENCE,
            "d": {
                "since": payload.since,
                "activities": CONVERTER.unstructure(payload.activities, list[Activity]),
                "status": payload.status,
                "afk": payload.afk,
            },
        }

        await self._ws.send_message(json.dumps(body))


async def _gw_receive_pump(ws: WebsocketClient, channel: MemoryObjectSendStream[Any]) -> None:
    """
    The Gateway receive pumper. Takes incoming messages from the Gateway and passes them along
    to our internal channel.
    """

    while True:
        try:
            next_message = await ws.receive_single_message(raise_on_close=False)
        except WebsocketClosedError as e:
            next_message = CloseMessage(close_code=e.code, reason=e.reason)
        except anyio.EndOfStream:
            next_message = CloseMessage(close_code=1006, reason="Connection lost")

        await channel.send(next_message)

        if isinstance(next_message, CloseMessage):
            break


async def _gw_send_pump(
    conn: GatewayConnection,
    external_chan: MemoryObjectReceiveStream[OutgoingGatewayEvent],
    loop_chan: MemoryObjectSendStream[Any],
) -> None:
    """
    The Gateway send pumper. Takes incoming messages from the bot and passes them along to our
    internal channel.
    """

    while True:
        if conn.buffered_send_message is None:
            try:
                conn.buffered_send_message = await external_chan.receive()
            except anyio.EndOfStream:
                return

        await loop_chan.send(conn.buffered_send_message)
        conn.buffered_send_message = None


class GatewayConnection:
    """
    A single shard's connection to the gateway. This owns the :class:`.GatewaySession` and the
    :class:`.HeartbeatTimer`; the websocket itself is replaced every time it goes away.
    """

    def __init__(
        self,
        *,
        initial_url: str,
        token: str,
        shard_id: int,
        shard_count: int,
        outbound_channel: MemoryObjectReceiveStream[OutgoingGatewayEvent],
        inbound_channel: MemoryObjectSendStream[IncomingGatewayEvent],
        options: ClientOptions | None = None,
        connect: Connector = open_ws_connection,
        session: GatewaySession | None = None,
        heartbeat_jitter: float | None = None,
    ) -> None:
        self.shard_id = shard_id
        self._initial_url = initial_url
        self._token = token
        self._shard_count = shard_count
        self._outbound = outbound_channel
        self._inbound = inbound_channel
        self._options = options or ClientOptions()
        self._connect = connect
        self._jitter = heartbeat_jitter

        self.logger = logger.bind(shard_id=shard_id)

        #: The resumable session state for this shard.
        self.session = session or GatewaySession()

        #: The heartbeat state for the current websocket.
        self.heartbeat = HeartbeatTimer()

        #: The packet dispatcher for this shard. Dispatch handlers can be registered on this.
        self.packets = PacketDispatcher(self, self.session, self.logger)

        #: The current lifecycle state.
        self.state = GatewayState.CONNECTING

        #: The buffered message we were trying to send over the websocket between closures.
        self.buffered_send_message: OutgoingGatewayEvent | None = None

        self._invalid_sessions = 0
        self._failed_connections = 0

        self._wrapped: GatewaySenderWrapper | None = None
        self._start_send_fn: Callable[[], None] | None = None

    def _set_state(self, state: GatewayState) -> None:
        if state == self.state:
            return

        self.logger.info("Gateway state changed", old=self.state.value, new=state.value)
        self.state = state

    def _emit_nowait(self, event: IncomingGatewayEvent) -> None:
        with contextlib.suppress(WouldBlock):
            self._inbound.send_nowait(event)

    async def emit(self, event: IncomingGatewayEvent) -> None:
        """
        Sends an event to the inbound channel, waiting for it to be received.
        """

        await self._inbound.send(event)

    @property
    def _sender(self) -> GatewaySenderWrapper:
        assert self._wrapped is not None, "no open websocket"
        return self._wrapped

    def _start_sending(self) -> None:
        # outgoing application messages only make sense on a live session.
        if self._start_send_fn is not None:
            self._start_send_fn()
            self._start_send_fn = None

    async def _identify(self) -> None:
        self._set_state(GatewayState.IDENTIFYING)
        await self._sender.send_identify(
            token=self._token,
            shard_id=self.shard_id,
            shard_count=self._shard_count,
            intents=self._options.intents,
            large_threshold=self._options.large_threshold,
        )

    async def _resume(self) -> None:
        assert self.session.session_id is not None

        self._set_state(GatewayState.RESUMING)
        await self._sender.send_resume(
            token=self._token,
            session_id=self.session.session_id,
            seq=self.session.sequence,
        )

    async def _send_heartbeat(self, *, scheduled: bool) -> None:
        now = anyio.current_time()
        await self._sender.send_heartbeat(seq=self.session.sequence)
        self.heartbeat.mark_sent(now)

        if scheduled:
            self.heartbeat.schedule_next(now)

        self._emit_nowait(
            GatewayHeartbeatSent(
                shard_id=self.shard_id,
                heartbeat_count=self.heartbeat.sent,
                sequence=self.session.sequence,
            )
        )

    ## Control packet hooks, called by the packet dispatcher. ##

    async def on_hello(self, heartbeat_interval: float) -> None:
        self.heartbeat.start(heartbeat_interval, anyio.current_time(), jitter=self._jitter)

        if self.session.can_resume:
            await self._resume()
        else:
            await self._identify()

        self._emit_nowait(
            GatewayHello(shard_id=self.shard_id, heartbeat_interval=heartbeat_interval)
        )

    async def on_heartbeat_request(self) -> None:
        # Occasionally, Discord asks us for a heartbeat. It gets one straight away, without
        # touching the regular schedule.
        await self._send_heartbeat(scheduled=False)

    def on_heartbeat_ack(self) -> None:
        self.heartbeat.acknowledge(anyio.current_time())

        self._emit_nowait(
            GatewayHeartbeatAck(
                shard_id=self.shard_id,
                heartbeat_ack_count=self.heartbeat.acks,
                latency=self.heartbeat.latency,
            )
        )

    async def on_reconnect_request(self) -> NoReturn:
        self._emit_nowait(GatewayReconnectRequested(shard_id=self.shard_id))
        raise WebsocketClosedError(code=1001, reason="Gateway is reconnecting!")

    async def on_invalid_session(self, resumable: bool) -> None:
        # Note that in some cases when there's an outage, we will get stuck in a loop of
        # IDENTIFY -> INVALIDATE_SESSION -> IDENTIFY -> ..., which is what the counter is for.
        self._invalid_sessions += 1
        self._emit_nowait(GatewayInvalidateSession(shard_id=self.shard_id, resumable=resumable))

        if self._invalid_sessions > self._options.max_invalid_sessions:
            raise SessionInvalidatedError(attempts=self._invalid_sessions)

        # even a "resumable" invalidation means this session is done with; start a fresh one.
        self.logger.info("Session invalidated, identifying again", resumable=resumable)
        self.session.invalidate()
        await self._identify()

    def _on_session_live(self, state: GatewayState) -> None:
        self._invalid_sessions = 0
        self._failed_connections = 0
        self._set_state(state)
        self._start_sending()

    def on_ready(self) -> None:
        self._on_session_live(GatewayState.READY)

    def on_resumed(self) -> None:
        self._on_session_live(GatewayState.RESUMED)

    ## Websocket lifecycle. ##

    async def _super_loop(
        self,
        ws: WebsocketClient,
        central_channel: MemoryObjectReceiveStream[OutgoingGatewayEvent | WsMessage],
    ) -> NoReturn:
        """
        The main super loop process that deals with the websocket.
        """

        self.logger.debug("Starting websocket main loop")
        self._wrapped = GatewaySenderWrapper(ws, self.logger)
        self.heartbeat.wait_for_hello(anyio.current_time(), self._options.hello_timeout)

        while True:
            # Use a cancel scope with the absolute deadline as the heartbeat loop. This ties
            # heartbeating to the lifetime of the super loop, and heartbeats can never be sent in
            # the middle of handling a packet.
            with anyio.CancelScope(deadline=self.heartbeat.deadline) as scope:
                next_message = await central_channel.receive()

            if scope.cancelled_caught:
                if not self.heartbeat.running:
                    # In all likelihood, some sort of network error happened and we're never going
                    # to get that hello message.
                    raise WebsocketClosedError(code=1006, reason="No HELLO received")

                if self.heartbeat.is_zombie:
                    # The previous heartbeat was never acknowledged, so this is a zombie
                    # connection. Kill it.
                    self.logger.warning(
                        "Zombie connection detected",
                        sent=self.heartbeat.sent,
                        acks=self.heartbeat.acks,
                    )
                    raise WebsocketClosedError(code=ZOMBIE_CLOSE_CODE, reason="Zombie!")

                await self._send_heartbeat(scheduled=True)
                continue

            match next_message:
                case TextualMessage() | BinaryMessage():
                    await self.packets.dispatch(next_message)

                case CloseMessage(close_code=code, reason=reason):
                    # Normally the WS itself would do this for us, but since we're using a channel
                    # instead we have to raise this ourselves.
                    raise WebsocketClosedError(code, reason)

                case GatewayPresenceUpdate():
                    await self._sender.send_presence(next_message)

                case PingMessage() | PongMessage():
                    # pings are answered by the websocket itself.
                    pass

                case _:
                    self.logger.warning("Unknown outgoing message", message=next_message)

    async def _run_once(self, url: str) -> WebsocketClosedError | GatewayError:
        """
        Runs a single websocket connection until it goes away, returning why.
        """

        close_code = 4000
        # closing the websocket cancels everything inside of it, so this can't be returned from
        # inside the block.
        ended: WebsocketClosedError | GatewayError = WebsocketClosedError(1006, "Connection lost")

        async with (
            self._connect(url) as ws,
            anyio.create_task_group() as nursery,
        ):
            write, read = anyio.create_memory_object_stream[Any]()

            nursery.start_soon(partial(_gw_receive_pump, ws, write))
            send_fn = partial(_gw_send_pump, self, self._outbound, write)
            self._start_send_fn = partial(nursery.start_soon, send_fn)

            try:
                await self._super_loop(ws, read)
            except (WebsocketClosedError, GatewayError) as e:
                ended = e
                if isinstance(e, WebsocketClosedError) and e.code == ZOMBIE_CLOSE_CODE:
                    close_code = ZOMBIE_CLOSE_CODE
            except anyio.get_cancelled_exc_class():
                # a normal closure ends the session on discord's side too.
                close_code = 1000
                raise
            finally:
                # kill both the pumping tasks, close the websocket, and let the caller retry.
                self.heartbeat.stop()
                self._start_send_fn = None
                self._wrapped = None
                nursery.cancel_scope.cancel()

                # a zombie will never answer our close frame, so don't wait around for it.
                with anyio.move_on_after(5, shield=True):
                    await ws.close(code=close_code, disgraceful=close_code == ZOMBIE_CLOSE_CODE)

        return ended

    def _connection_url(self) -> str:
        if self.session.can_resume and self.session.resume_url:
            base = self.session.resume_url
        else:
            base = self._initial_url

        params = {"v": str(self._options.gateway_version), "encoding": "json"}
        return str(httpx.URL(base).copy_merge_params(params))

    async def _handle_close(self, e: WebsocketClosedError) -> None:
        match e.code:
            case 4004 | 4010 | 4011 | 4012 | 4013 | 4014:
                reason = e.reason or FATAL_CLOSE_CODES[e.code]
                self.logger.error("Unrecoverable close", code=e.code, reason=reason)
                await self.emit(
                    GatewayDisconnected(
                        shard_id=self.shard_id, code=e.code, reason=reason, fatal=True
                    )
                )
                raise GatewayFatalError(code=e.code, reason=reason) from e

            case 4007 | 4009:
                self.logger.warning("Session can't be resumed", code=e.code, reason=e.reason)
                self.session.invalidate()

            case _:
                self.logger.warning("Unexpected close", code=e.code, reason=e.reason)

        await self.emit(GatewayDisconnected(shard_id=self.shard_id, code=e.code, reason=e.reason))

    async def run(self) -> NoReturn:
        """
        Runs this connection forever, reconnecting as needed. Only returns by raising.
        """

        try:
            while True:
                self._set_state(GatewayState.CONNECTING)
                url = self._connection_url()
                self.logger.debug("Opening websocket connection", url=url)

                try:
                    ended = await self._run_once(url)
                except* TRANSPORT_ERRORS as group:
                    ended = _closed_by(group)
                    self.logger.warning("Websocket connection failed", error=str(ended))

                if isinstance(ended, SessionInvalidatedError):
                    self.logger.error("Too many invalid sessions", attempts=ended.attempts)
                    await self.emit(
                        GatewayDisconnected(
                            shard_id=self.shard_id,
                            code=1000,
                            reason="Too many invalid sessions",
                            fatal=True,
                        )
                    )
                    raise ended

                if isinstance(ended, GatewayError):
                    raise ended

                if self.state not in (GatewayState.READY, GatewayState.RESUMED):
                    self._failed_connections += 1

                await self._handle_close(ended)
                self._set_state(GatewayState.RECONNECTING)

                if self._failed_connections:
                    delay = min(
                        self._options.backoff_for(self._failed_connections),
                        self._options.reconnect_backoff_cap,
                    )
                    self.logger.info("Waiting before reconnecting", delay=delay)
                    await anyio.sleep(delay)
        finally:
            self.heartbeat.stop()
            self._set_state(GatewayState.CLOSED)


async def run_gateway_loop(
    *,
    initial_url: str,
    token: str,
    shard_id: int,
    shard_count: int,
    outbound_channel: MemoryObjectReceiveStream[OutgoingGatewayEvent],
    inbound_channel: MemoryObjectSendStream[IncomingGatewayEvent],
    options: ClientOptions | None = None,
    connect: Connector = open_ws_connection,
    session: GatewaySession | None = None,
) -> NoReturn:
    """
    Runs the gateway loop forever. This should be ran in its own task, and is stopped by
    cancelling it.

    :param initial_url: The initial URL to connect to the gateway to. This will only be used for
        the first connection, and whenever the session can't be resumed; all other connections
        will use the URL returned in the ``READY`` packet.

    :param token: The Bot token to use when identifying.
    :param shard_id: The shard ID that this gateway will use.
    :param shard_count: The number of shards in total that will be spawned, including this one.
    :param outbound_channel: The channel that outbound gateway events will be read from. This is
        the mechanism for sending control messages such as presence updates through the gateway.

        Outgoing messages will be buffered automatically across reconnects, with messages that
        have failed to send being retried after reconnection.

    :param inbound_channel: The channel that incoming gateway events will be sent to.

        This channel should, ideally, have a buffer size of zero to prevent less important events
        from clogging up the channel (as they are sent without waiting, and simply discarded if
        nobody is listening).

    :param options: The :class:`.ClientOptions` to use for intents and reconnect behaviour.
    :param connect: The function used to open websocket connections.
    :param session: A previously stored session to resume instead of identifying.

    :raises GatewayFatalError: If the gateway closed the connection in an unrecoverable way.
    :raises SessionInvalidatedError: If the gateway kept invalidating our sessions.
    """

    conn = GatewayConnection(
        initial_url=initial_url,
        token=token,
        shard_id=shard_id,
        shard_count=shard_count,
        outbound_channel=outbound_channel,
        inbound_channel=inbound_channel,
        options=options,
        connect=connect,
        session=session,
    )
    await conn.run()
