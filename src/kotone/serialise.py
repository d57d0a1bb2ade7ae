from typing import Any

import arrow
from arrow import Arrow
from cattrs import Converter
from cattrs.gen import make_dict_structure_fn
from cattrs.preconf.json import configure_converter as preconf_json

from kotone.http.response import GatewayResponse, GatewaySessionLimits
from kotone.models.embed import Embed
from kotone.models.interaction import Interaction
from kotone.models.message import RawMessage
from kotone.models.presence import Presence


def unstructure_arrow(it: Arrow) -> str:
    """
    An unstructuring hook for an :class:`~arrow.Arrow`.

    This returns the value in ISO 8601 timestamp format, in UTC.
    """

    return it.to("utc").isoformat()


def structure_arrow(it: str | float, type: Any) -> Arrow:
    """
    A structure hook for an :class:`~arrow.Arrow`.

    This will attempt to parse from a Unix timestamp first, and then from an ISO 8601 timestamp
    if that fails.
    """

    try:
        ts = float(it)
    except ValueError:
        return arrow.get(it)

    return arrow.get(ts)


def add_useful_conversions(converter: Converter) -> Converter:
    """
    Adds useful structure and unstructure hooks to a :class:`.Converter`.
    """

    converter.register_structure_hook(Arrow, structure_arrow)
    converter.register_unstructure_hook(Arrow, unstructure_arrow)

    return converter


def create_kotone_converter() -> Converter:
    """
    Creates a ``cattrs`` converter for deserialising Discord objects.
    """

    converter = Converter(
        omit_if_default=True,
        forbid_extra_keys=True,
        prefer_attrib_converters=True,
    )
    preconf_json(converter)
    add_useful_conversions(converter)

    Embed.configure_converter(converter)
    Interaction.configure_converter(converter)
    Presence.configure_converter(converter)
    RawMessage.configure_converter(converter)

    # the gateway info endpoint sprouts new fields every so often.
    for klass in (GatewaySessionLimits, GatewayResponse):
        converter.register_structure_hook(
            klass, make_dict_structure_fn(klass, converter, _cattrs_forbid_extra_keys=False)
        )

    return converter


CONVERTER = create_kotone_converter()
