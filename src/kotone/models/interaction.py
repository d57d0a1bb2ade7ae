from __future__ import annotations

import enum
from typing import Any

import arrow
import attr
from cattrs import Converter, override
from cattrs.gen import make_dict_structure_fn

DISCORD_EPOCH = 1420070400000

#: The number of seconds an interaction token stays valid for.
INTERACTION_TOKEN_LIFETIME = 15 * 60


class InteractionKind(enum.IntEnum):
    """
    Enumeration of the possible kinds of interaction.
    """

    PING = 1
    APPLICATION_COMMAND = 2
    MESSAGE_COMPONENT = 3
    APPLICATION_COMMAND_AUTOCOMPLETE = 4
    MODAL_SUBMIT = 5


class InteractionResponseType(enum.IntEnum):
    """
    Enumeration of the possible ways of responding to an interaction.
    """

    PONG = 1
    CHANNEL_MESSAGE = 4
    DEFERRED_CHANNEL_MESSAGE = 5
    DEFERRED_UPDATE_MESSAGE = 6
    UPDATE_MESSAGE = 7


@attr.s(slots=True, kw_only=True)
class CommandOption:
    """
    A single option passed to an application command.
    """

    #: The name of this option.
    name: str = attr.ib()

    #: The raw option type.
    type: int = attr.ib()

    #: The value of this option, if it isn't a group.
    value: Any = attr.ib(default=None)

    #: The nested options, for subcommands and subcommand groups.
    options: list[CommandOption] = attr.ib(factory=list)


@attr.s(slots=True, kw_only=True)
class Interaction:
    """
    A single interaction. There's only one of these for every kind of interaction; check
    :attr:`.kind` to find out what the command-specific fields mean.
    """

    @classmethod
    def configure_converter(cls, converter: Converter) -> None:  # noqa: D102
        converter.register_structure_hook(
            CommandOption,
            make_dict_structure_fn(CommandOption, converter, _cattrs_forbid_extra_keys=False),
        )
        converter.register_structure_hook(
            cls,
            make_dict_structure_fn(
                cls,
                converter,
                kind=override(rename="type"),
                _cattrs_forbid_extra_keys=False,
            ),
        )

    #: The snowflake ID of this interaction.
    id: int = attr.ib()

    #: The ID of the application this interaction is for.
    application_id: int = attr.ib()

    #: What kind of interaction this is.
    kind: InteractionKind = attr.ib()

    #: The continuation token for responding to this interaction.
    token: str = attr.ib(repr=False)

    #: The ID of the channel this interaction was sent in, if any.
    channel_id: int | None = attr.ib(default=None)

    #: The ID of the guild this interaction was sent in, if any.
    guild_id: int | None = attr.ib(default=None)

    #: The raw member data of the invoking user, if sent in a guild.
    member: dict[str, Any] | None = attr.ib(default=None, repr=False)

    #: The raw interaction data. For commands, see :attr:`.command_name` and friends.
    data: dict[str, Any] = attr.ib(factory=dict, repr=False)

    @property
    def command_id(self) -> int | None:
        """
        The ID of the invoked command, for application command interactions.
        """

        if self.kind not in (
            InteractionKind.APPLICATION_COMMAND,
            InteractionKind.APPLICATION_COMMAND_AUTOCOMPLETE,
        ):
            return None

        return int(self.data["id"])

    @property
    def command_name(self) -> str | None:
        """
        The name of the invoked command, for application command interactions.
        """

        if self.command_id is None:
            return None

        return self.data["name"]

    def command_options(self, converter: Converter) -> list[CommandOption]:
        """
        Gets the options passed to the invoked command. Empty for non-command interactions.
        """

        if self.command_id is None:
            return []

        return converter.structure(self.data.get("options", []), list[CommandOption])

    @property
    def created_at(self) -> arrow.Arrow:
        """
        The time this interaction was created at.
        """

        ts = ((self.id >> 22) + DISCORD_EPOCH) / 1000
        return arrow.get(ts)

    @property
    def expired(self) -> bool:
        """
        If the token for this interaction can no longer be used to respond.
        """

        return arrow.utcnow() >= self.created_at.shift(seconds=INTERACTION_TOKEN_LIFETIME)
