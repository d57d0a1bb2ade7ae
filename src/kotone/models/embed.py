from __future__ import annotations

import arrow
import attr
from arrow import Arrow
from cattrs import Converter, override
from cattrs.gen import make_dict_structure_fn, make_dict_unstructure_fn

# Builder-style, because that's how everyone ends up writing embeds anyway. Field length limits are
# Discord's problem; a bad embed comes back as a 400.


@attr.s(slots=True, kw_only=True)
class EmbedFooter:
    """
    The footer for an embed. This displays directly at the bottom.
    """

    #: The text within this footer.
    text: str = attr.ib()

    #: The icon URL for this footer.
    icon_url: str | None = attr.ib(default=None)


@attr.s(slots=True, kw_only=True)
class EmbedImage:
    """
    A single image in an embed. This is shared between both the image and the thumbnail.
    """

    #: The image URL for this image.
    url: str = attr.ib()

    #: The proxy URL for this image, if any. Read-only.
    proxy_url: str | None = attr.ib(default=None)

    #: The height for this image, if any. Read-only.
    height: int | None = attr.ib(default=None)

    #: The width for this image, if any. Read-only.
    width: int | None = attr.ib(default=None)


@attr.s(slots=True, kw_only=True)
class EmbedAuthor:
    """
    The author for this embed, shown at the top of the embed.
    """

    #: The name of the author.
    name: str = attr.ib()

    #: The URL of the author.
    url: str | None = attr.ib(default=None)

    #: The icon URL for the author, if any.
    icon_url: str | None = attr.ib(default=None)


@attr.s(slots=True, kw_only=True)
class EmbedField:
    """
    A single key-value field for this embed, shown as a list below the description.
    """

    #: The name of this field.
    name: str = attr.ib()

    #: The value for this field.
    value: str = attr.ib()

    #: If this field displays inline or not.
    inline: bool = attr.ib(default=False)


@attr.s(slots=True, kw_only=True)
class Embed:
    """
    A rich content embed in a message.
    """

    @classmethod
    def configure_converter(cls, converter: Converter) -> None:  # noqa: D102
        # the inner hooks have to exist before the outer hooks are generated.
        for klass in (EmbedAuthor, EmbedFooter, EmbedImage, EmbedField):
            converter.register_structure_hook(
                klass,
                make_dict_structure_fn(klass, converter, _cattrs_forbid_extra_keys=False),
            )
            converter.register_unstructure_hook(
                klass,
                make_dict_unstructure_fn(klass, converter, _cattrs_omit_if_default=True),
            )

        converter.register_structure_hook(
            cls,
            make_dict_structure_fn(
                cls, converter, colour=override(rename="color"), _cattrs_forbid_extra_keys=False
            ),
        )

        converter.register_unstructure_hook(
            cls,
            make_dict_unstructure_fn(
                cls, converter, _cattrs_omit_if_default=True, colour=override(rename="color")
            ),
        )

    #: The title for this embed, if any.
    title: str | None = attr.ib(default=None)

    #: The description for this embed, if any.
    description: str | None = attr.ib(default=None)

    #: The url that the title links to, if any.
    url: str | None = attr.ib(default=None)

    #: The timestamp for this embed, if any.
    timestamp: Arrow | None = attr.ib(default=None)

    #: The colour for this embed, if any.
    colour: int | None = attr.ib(default=None)

    #: The footer for this embed, if any.
    footer: EmbedFooter | None = attr.ib(default=None)

    #: The image for this embed, if any.
    image: EmbedImage | None = attr.ib(default=None)

    #: The thumbnail for this embed, if any.
    thumbnail: EmbedImage | None = attr.ib(default=None)

    #: The author for this embed, if any.
    author: EmbedAuthor | None = attr.ib(default=None)

    #: The fields for this embed.
    fields: list[EmbedField] = attr.ib(factory=list)

    def set_title(self, title: str) -> Embed:
        """
        Sets the title of this embed.
        """

        self.title = title
        return self

    def set_description(self, description: str) -> Embed:
        """
        Sets the description of this embed.
        """

        self.description = description
        return self

    def set_url(self, url: str) -> Embed:
        """
        Sets the URL that the title of this embed links to.
        """

        self.url = url
        return self

    def set_colour(self, colour: int) -> Embed:
        """
        Sets the colour of the bar on the side of this embed, as a ``0xRRGGBB`` integer.
        """

        self.colour = colour
        return self

    def set_timestamp(self, timestamp: Arrow | None = None) -> Embed:
        """
        Sets the timestamp of this embed. Defaults to the current time.
        """

        self.timestamp = timestamp or arrow.utcnow()
        return self

    def set_author(
        self, name: str, *, icon_url: str | None = None, url: str | None = None
    ) -> Embed:
        """
        Sets the author of this embed.
        """

        self.author = EmbedAuthor(name=name, icon_url=icon_url, url=url)
        return self

    def set_footer(self, text: str, *, icon_url: str | None = None) -> Embed:
        """
        Sets the footer of this embed.
        """

        self.footer = EmbedFooter(text=text, icon_url=icon_url)
        return self

    def set_image(self, url: str) -> Embed:
        """
        Sets the main image of this embed.
        """

        self.image = EmbedImage(url=url)
        return self

    def set_thumbnail(self, url: str) -> Embed:
        """
        Sets the thumbnail of this embed.
        """

        self.thumbnail = EmbedImage(url=url)
        return self

    def add_field(self, name: str, value: str, *, inline: bool = False) -> Embed:
        """
        Adds a single field to the end of this embed.
        """

        self.fields.append(EmbedField(name=name, value=value, inline=inline))
        return self
