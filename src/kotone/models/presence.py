from __future__ import annotations

import enum
from typing import Any, Literal, TypeAlias

import attr
from cattrs import Converter, override
from cattrs.gen import make_dict_structure_fn, make_dict_unstructure_fn

# a minimum possible effort object as the primary purpose is literally just tracking statuses
# and status names.

PresenceStatus: TypeAlias = Literal["online", "idle", "dnd", "offline"]
SendablePresenceStatus: TypeAlias = PresenceStatus | Literal["invisible"]


class ActivityType(enum.IntEnum):
    """
    Enumeration of the possible types of activities.
    """

    GAME = 0
    STREAMING = 1
    LISTENING = 2
    WATCHING = 3
    CUSTOM = 4
    COMPETING = 5


@attr.s(slots=True, kw_only=True)
class Activity:
    """
    A single activity in a presence.
    """

    #: The name of this activity. This will be the string "Custom Status" for custom statuses.
    name: str = attr.ib()

    #: The type of this activity.
    type: ActivityType = attr.ib()

    #: The 'party state' for this activity, or custom text for the ``CUSTOM`` activity type.
    state: str | None = attr.ib(default=None)

    #: The URL for this activity.
    url: str | None = attr.ib(default=None)

    @classmethod
    def custom(cls, text: str, *, url: str | None = None) -> Activity:
        """
        Shortcut method for creating a new custom activity.
        """

        return Activity(name="Custom Status", state=text, type=ActivityType.CUSTOM, url=url)


def _user_id(it: Any) -> int:
    # the gateway sends a partial user here, but we only care about the ID.
    if isinstance(it, dict):
        return int(it["id"])

    return int(it)


@attr.s(slots=True, kw_only=True)
class Presence:
    """
    A single set of presence data for a single user, as sent in ``PRESENCE_UPDATE``.
    """

    @classmethod
    def configure_converter(cls, converter: Converter) -> None:  # noqa: D102
        converter.register_structure_hook(
            Activity,
            make_dict_structure_fn(Activity, converter, _cattrs_forbid_extra_keys=False),
        )
        converter.register_unstructure_hook(
            Activity,
            make_dict_unstructure_fn(Activity, converter, _cattrs_omit_if_default=True),
        )
        converter.register_structure_hook(
            cls,
            make_dict_structure_fn(
                cls,
                converter,
                user_id=override(rename="user"),
                _cattrs_forbid_extra_keys=False,
                _cattrs_prefer_attrib_converters=True,
            ),
        )

    #: The ID of the user this presence is for.
    user_id: int = attr.ib(converter=_user_id)

    #: The ID of the guild this presence is for, if any.
    guild_id: int | None = attr.ib(default=None)

    #: The current computed status for this user.
    status: PresenceStatus = attr.ib(default="offline")

    #: A list of activities for this user.
    activities: list[Activity] = attr.ib(factory=list)

    #: The per-platform statuses of this user.
    client_status: dict[str, Any] = attr.ib(factory=dict, repr=False)
