from typing import final

import attr

from kotone.models.interaction import Interaction
from kotone.models.message import RawMessage
from kotone.models.presence import Presence

__all__ = (
    "DispatchedEvent",
    "Connected",
    "ShardReady",
    "Ready",
    "PresenceUpdate",
    "InteractionCreate",
    "MessageCreate",
)


class DispatchedEvent:
    """
    Marker interface for dispatched events.
    """

    __slots__ = ()


@attr.s(str=True, slots=True)
@final
class Connected(DispatchedEvent):
    """
    Published when a single shard has successfully identified with the gateway.
    """


@attr.s(str=True, slots=True)
@final
class ShardReady(DispatchedEvent):
    """
    Published when a single shard has streamed all of its guilds.
    """


@attr.s(str=True, slots=True)
@final
class Ready(DispatchedEvent):
    """
    Published once, when all shards are ready.
    """


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class PresenceUpdate(DispatchedEvent):
    """
    Published when a user's presence changes. A bulk presence replacement publishes one of these
    per presence, in order.
    """

    #: The new presence data.
    presence: Presence = attr.ib()


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class InteractionCreate(DispatchedEvent):
    """
    Published when a user invokes an interaction, such as an application command.
    """

    #: The interaction that was created. Check :attr:`.Interaction.kind` to see what it is.
    interaction: Interaction = attr.ib()


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class MessageCreate(DispatchedEvent):
    """
    Published when a message is created within a channel.

    The content field of messages with this event will be empty if the bot user does not have the
    ``MESSAGE_CONTENT`` intent (enabled by default).
    """

    #: The message that was actually created.
    message: RawMessage = attr.ib()
