from collections.abc import Iterable

import attr
import structlog
from cattrs import Converter

from kotone.event.model import (
    Connected,
    DispatchedEvent,
    InteractionCreate,
    MessageCreate,
    PresenceUpdate,
    ShardReady,
)
from kotone.gateway.event import GatewayDispatch
from kotone.models.interaction import Interaction
from kotone.models.message import RawMessage
from kotone.models.presence import Presence
from kotone.serialise import CONVERTER

logger: structlog.stdlib.BoundLogger = structlog.get_logger(name=__name__)


@attr.s(slots=True)
class PerShardState:
    is_ready: bool = attr.ib(default=False)
    guilds_remaining: set[int] = attr.ib(factory=set)


class EventParser:
    """
    Deals with parsing incoming dispatch events and converting them into high-level events.

    Each parsing function here is a generator that may yield any number of events, including zero.
    Dispatch events without a parsing function are ignored.
    """

    def __init__(self, shard_count: int, converter: Converter = CONVERTER) -> None:
        """
        :param shard_count: The number of shards that the bot is using. Used for handling guild
            streaming and per-shard readiness.

        :param converter: The ``cattrs`` converter to structure event bodies with.
        """

        self._converter = converter

        #: A list of per-shard shared mutable state.
        self.per_shard_state: list[PerShardState] = [PerShardState() for _ in range(shard_count)]

    def get_parsed_events(self, event: GatewayDispatch) -> list[DispatchedEvent]:
        """
        Gets a list of parsed events from the provided :class:`.GatewayDispatch` gateway event.

        :param event: The :class:`.GatewayDispatch` event that high-level events will be parsed
            from.
        :return: A list of :class:`.DispatchedEvent` instances that this event produced, if any.
        """

        fn = getattr(self, f"_parse_{event.event_name.lower()}", None)
        if fn is None:
            logger.debug("Ignoring unknown dispatch", dispatched_event=event.event_name)
            return []

        return list(fn(event))

    def _parse_ready(self, event: GatewayDispatch) -> Iterable[DispatchedEvent]:
        """
        Parses the READY event, which signals that a connection is open.
        """

        shard_state = self.per_shard_state[event.shard_id]
        guild_ids = {int(g["id"]) for g in event.body.get("guilds", [])}

        yield Connected()

        if shard_state.is_ready:
            # a re-identify on an already-ready shard; the guilds will just stream in again.
            return

        if not guild_ids:
            # if there's no guilds for this shard (what?), make sure that the bot doesn't get stuck
            # waiting for guild streams forever.
            shard_state.is_ready = True
            yield ShardReady()
        else:
            shard_state.guilds_remaining = guild_ids

    def _parse_guild_create(self, event: GatewayDispatch) -> Iterable[DispatchedEvent]:
        shard_state = self.per_shard_state[event.shard_id]
        if shard_state.is_ready:
            return

        shard_state.guilds_remaining.discard(int(event.body["id"]))
        if not shard_state.guilds_remaining:
            logger.debug("Shard finished streaming guilds", shard_id=event.shard_id)
            shard_state.is_ready = True
            yield ShardReady()

    def _parse_presence_update(self, event: GatewayDispatch) -> Iterable[DispatchedEvent]:
        yield PresenceUpdate(presence=self._converter.structure(event.body, Presence))

    def _parse_interaction_create(self, event: GatewayDispatch) -> Iterable[DispatchedEvent]:
        yield InteractionCreate(interaction=self._converter.structure(event.body, Interaction))

    def _parse_message_create(self, event: GatewayDispatch) -> Iterable[DispatchedEvent]:
        yield MessageCreate(message=self._converter.structure(event.body, RawMessage))
