from typing import Any, final

import attr

from kotone.models.presence import Activity, SendablePresenceStatus


class OutgoingGatewayEvent:
    """
    Marker interface for outgoing events towards the Discord gateway.
    """


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class GatewayPresenceUpdate(OutgoingGatewayEvent):
    """
    Updates the presence for the current bot user on the current shard.
    """

    #: The status for this user.
    status: SendablePresenceStatus = attr.ib()

    #: The list of activities for this user.
    activities: list[Activity] = attr.ib(factory=list)

    #: The absolute Unix time (milliseconds) for when the client went idle, or None if not idle.
    since: int | None = attr.ib(default=None)

    #: If True, this client is considered AFK.
    afk: bool = attr.ib(default=False)


@attr.s(frozen=True, slots=True, kw_only=True)
class IncomingGatewayEvent:
    """
    Marker interface for incoming events from the Discord gateway.
    """

    #: The shard ID this event came from. Used to uniquely identify events during multi-shard
    #: situations.
    shard_id: int = attr.ib()


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class GatewayHello(IncomingGatewayEvent):
    """
    The HELLO event from the gateway. This is a voidable event; it is dropped if nobody is
    listening.
    """

    #: The time, in seconds, between subsequent heartbeats.
    heartbeat_interval: float = attr.ib()


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class GatewayReconnectRequested(IncomingGatewayEvent):
    """
    Published when the gateway has a reconnect requested by the other side. Voidable.
    """


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class GatewayHeartbeatSent(IncomingGatewayEvent):
    """
    Published when the gateway is sending a heartbeat. Voidable.
    """

    #: The number of heartbeats that we have sent, including this one.
    heartbeat_count: int = attr.ib()

    #: The sequence sent alongside this heartbeat.
    sequence: int = attr.ib()


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class GatewayHeartbeatAck(IncomingGatewayEvent):
    """
    Published when the gateway has received a heartbeat ack. Voidable.
    """

    #: The number of heartbeat acks that we have received, including this one.
    heartbeat_ack_count: int = attr.ib()

    #: The round-trip time of the acknowledged heartbeat, in seconds.
    latency: float | None = attr.ib(default=None)


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class GatewayInvalidateSession(IncomingGatewayEvent):
    """
    Published when our IDENTIFY or RESUME failed. Voidable.
    """

    #: If we can resume after this or not.
    resumable: bool = attr.ib()


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class GatewayDispatch(IncomingGatewayEvent):
    """
    A single dispatch event from the gateway.
    """

    #: The internal, Discord-provided name of the event being dispatched.
    event_name: str = attr.ib()

    #: The sequence number for this dispatch. Synthesised dispatches share the sequence of the
    #: packet they were created from.
    sequence: int | None = attr.ib()

    #: The raw event body for this dispatch.
    body: Any = attr.ib()


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class GatewayDisconnected(IncomingGatewayEvent):
    """
    Published whenever a gateway connection goes away. Unlike the other control events, this is
    always delivered.
    """

    #: The close code of the connection.
    code: int = attr.ib()

    #: The close reason of the connection, if any.
    reason: str = attr.ib(default="")

    #: If True, the shard will not reconnect.
    fatal: bool = attr.ib(default=False)

