from __future__ import annotations

from typing import Any

import attr
from arrow import Arrow
from cattrs import Converter
from cattrs.gen import make_dict_structure_fn, override

from kotone.models.embed import Embed


def _author_id(it: Any) -> int:
    # webhook and user authors alike, we only keep the ID.
    if isinstance(it, dict):
        return int(it["id"])

    return int(it)


@attr.s(slots=True, kw_only=True)
class RawMessage:
    """
    A single message sent in a channel.
    """

    @classmethod
    def configure_converter(cls, converter: Converter) -> None:  # noqa: D102
        converter.register_structure_hook(
            cls,
            make_dict_structure_fn(
                cls,
                converter,
                author_id=override(rename="author"),
                _cattrs_forbid_extra_keys=False,
                _cattrs_prefer_attrib_converters=True,
            ),
        )

    #: The Snowflake ID of this message.
    id: int = attr.ib()

    #: The Snowflake ID of the channel that this message was sent in.
    channel_id: int = attr.ib()

    #: The Snowflake ID of the guild that this message was sent in, if any. This is null for
    #: messages created or retrieved over the HTTP API.
    guild_id: int | None = attr.ib(default=None)

    #: The ID of the user (or webhook) that sent this message.
    author_id: int = attr.ib(converter=_author_id)

    #: The textual content of this message. This may be empty in the case that a message has only
    #: embeds or attachments.
    content: str = attr.ib(default="")

    #: The list of :class:`.Embed` instances contained within this message.
    embeds: list[Embed] = attr.ib(factory=list)

    #: The nonce sent alongside this message, if any. Discord echoes back whatever was sent.
    nonce: Any = attr.ib(default=None)

    #: If this message was sent as text-to-speech.
    tts: bool = attr.ib(default=False)

    #: The timestamp for this message.
    timestamp: Arrow | None = attr.ib(default=None)

    #: The raw message type.
    type: int = attr.ib(default=0)
