from typing import Any

from kotone.event.model import (
    Connected,
    InteractionCreate,
    MessageCreate,
    PresenceUpdate,
    ShardReady,
)
from kotone.event.parser import EventParser
from kotone.gateway.event import GatewayDispatch
from kotone.models.interaction import InteractionKind
from kotone.serialise import CONVERTER


def dispatch(name: str, body: Any, *, shard_id: int = 0) -> GatewayDispatch:
    return GatewayDispatch(shard_id=shard_id, event_name=name, sequence=1, body=body)


def test_ready_without_guilds_is_immediately_ready():
    parser = EventParser(1)
    events = parser.get_parsed_events(dispatch("READY", {"session_id": "abc", "guilds": []}))

    assert events == [Connected(), ShardReady()]
    assert parser.per_shard_state[0].is_ready


def test_ready_waits_for_guild_streaming():
    parser = EventParser(2)
    ready = dispatch(
        "READY", {"session_id": "abc", "guilds": [{"id": "1"}, {"id": "2"}]}, shard_id=1
    )

    assert parser.get_parsed_events(ready) == [Connected()]
    assert parser.get_parsed_events(dispatch("GUILD_CREATE", {"id": "1"}, shard_id=1)) == []
    assert parser.get_parsed_events(dispatch("GUILD_CREATE", {"id": "2"}, shard_id=1)) == [
        ShardReady()
    ]

    # guilds joined later don't make the shard ready twice.
    assert parser.get_parsed_events(dispatch("GUILD_CREATE", {"id": "3"}, shard_id=1)) == []
    assert not parser.per_shard_state[0].is_ready


def test_unknown_events_are_ignored():
    parser = EventParser(1)

    assert parser.get_parsed_events(dispatch("TYPING_START", {"channel_id": "1"})) == []


def test_presence_update():
    parser = EventParser(1)
    body = {
        "user": {"id": "66237334693085184"},
        "guild_id": "123456789012345678",
        "status": "dnd",
        "activities": [{"name": "Custom Status", "type": 4, "state": "hi", "id": "custom"}],
        "client_status": {"desktop": "dnd"},
    }

    (event,) = parser.get_parsed_events(dispatch("PRESENCE_UPDATE", body))

    assert isinstance(event, PresenceUpdate)
    assert event.presence.user_id == 66237334693085184
    assert event.presence.guild_id == 123456789012345678
    assert event.presence.status == "dnd"
    assert event.presence.activities[0].state == "hi"


def test_message_create():
    parser = EventParser(1)
    body = {
        "id": "1100000000000000000",
        "channel_id": "123456789012345678",
        "guild_id": "223456789012345678",
        "author": {"id": "80351110224678912", "username": "Nelly"},
        "member": {"roles": []},
        "content": "!ping",
        "timestamp": "2023-06-01T12:00:00+00:00",
    }

    (event,) = parser.get_parsed_events(dispatch("MESSAGE_CREATE", body))

    assert isinstance(event, MessageCreate)
    assert event.message.guild_id == 223456789012345678
    assert event.message.author_id == 80351110224678912
    assert event.message.content == "!ping"
    assert event.message.embeds == []


def test_interaction_create():
    parser = EventParser(1)
    body = {
        "id": "1100000000000000000",
        "application_id": "1000000000000000000",
        "type": 2,
        "token": "abcdef",
        "version": 1,
        "channel_id": "123456789012345678",
        "data": {
            "id": "900000000000000000",
            "name": "echo",
            "type": 1,
            "options": [{"name": "text", "type": 3, "value": "hello"}],
        },
    }

    (event,) = parser.get_parsed_events(dispatch("INTERACTION_CREATE", body))

    assert isinstance(event, InteractionCreate)
    interaction = event.interaction
    assert interaction.kind == InteractionKind.APPLICATION_COMMAND
    assert interaction.command_name == "echo"
    assert interaction.command_id == 900000000000000000

    (option,) = interaction.command_options(CONVERTER)
    assert option.name == "text"
    assert option.value == "hello"
