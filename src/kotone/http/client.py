from __future__ import annotations

from collections.abc import Iterable, Mapping
from importlib.metadata import version
from typing import Any

import structlog
from anyio.abc import TaskGroup
from httpx import AsyncClient, Response

from kotone.config import ClientOptions
from kotone.http.dispatcher import RestDispatcher
from kotone.http.request import Attachment
from kotone.http.response import GatewayResponse
from kotone.models.embed import Embed
from kotone.models.interaction import Interaction, InteractionResponseType
from kotone.models.message import RawMessage
from kotone.serialise import CONVERTER

logger: structlog.stdlib.BoundLogger = structlog.get_logger(name=__name__)

#: Message nonces have to fit into an unsigned 64-bit integer.
MAX_NONCE = 2**64 - 1


class Endpoints:
    """
    Contains all of the endpoints used by the HTTP client.
    """

    def __init__(self, api_base: str = "/api/v10") -> None:
        self.API_BASE = api_base

        self.GET_GATEWAY = self.API_BASE + "/gateway/bot"

        self.CHANNEL = self.API_BASE + "/channels/{channel_id}"
        self.CHANNEL_MESSAGES = self.CHANNEL + "/messages"
        self.CHANNEL_INDIVIDUAL_MESSAGE = self.CHANNEL_MESSAGES + "/{message_id}"

        self.INTERACTION_CALLBACK = (
            self.API_BASE + "/interactions/{interaction_id}/{interaction_token}/callback"
        )
        self.WEBHOOK_MESSAGES = self.API_BASE + "/webhooks/{application_id}/{interaction_token}"


def _validate_nonce(nonce: int | str) -> int:
    try:
        value = int(nonce)
    except ValueError:
        raise ValueError("Message nonce must fit in an unsigned 64-bit integer") from None

    if not 0 <= value <= MAX_NONCE:
        raise ValueError("Message nonce must fit in an unsigned 64-bit integer")

    return value


def _message_body(
    *,
    content: str | None,
    embed: Embed | Iterable[Embed] | None,
    tts: bool = False,
    nonce: int | str | None = None,
    ephemeral: bool = False,
) -> dict[str, Any]:
    body: dict[str, Any] = {}

    if content is not None:
        body["content"] = content

    if embed is not None:
        if isinstance(embed, Embed):
            embed = [embed]

        body["embeds"] = CONVERTER.unstructure(list(embed), list[Embed])

    if tts:
        body["tts"] = True

    if nonce is not None:
        body["nonce"] = _validate_nonce(nonce)

    if ephemeral:
        body["flags"] = 1 << 6

    return body


class KotoneHttpClient:
    """
    Wrapper around the various Discord HTTP actions. All requests go through a
    :class:`.RestDispatcher`, so they are automatically queued per route and ratelimited.
    """

    def __init__(
        self,
        *,
        nursery: TaskGroup,
        httpx_client: AsyncClient,
        token: str,
        options: ClientOptions | None = None,
    ):
        """
        :param nursery: The task group to spawn request handlers in.
        :param httpx_client: The ``httpx`` ``AsyncClient`` to send the actual network resources on.
        :param token: The Bot user token to use.
        :param options: The :class:`.ClientOptions` for retries, request modes, and endpoints.
        """

        self.options = options or ClientOptions()
        self.endpoints = Endpoints(self.options.api_base)
        self._http = httpx_client

        user_agent = self.options.user_agent
        if user_agent is None:
            package_version = version("kotone")
            user_agent = f"DiscordBot (https://github.com/kotone-py/kotone, {package_version})"

        self._http.headers.update({
            "Authorization": f"Bot {token}",
            "User-Agent": user_agent,
        })

        # mypy doesn't like these.
        self._http.base_url = self.options.base_url  # type: ignore
        # we manage our own retries, and a request stuck forever would block its whole route.
        self._http.timeout = 30.0  # type: ignore

        #: The dispatcher that every request is sent through.
        self.dispatcher = RestDispatcher(
            nursery=nursery, httpx_client=self._http, options=self.options
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        form_data: Mapping[str, str] | None = None,
        attachments: Iterable[Attachment] = (),
        reason: str | None = None,
        authenticated: bool = True,
    ) -> Response:
        """
        Performs a request to the specified endpoint path. See :meth:`.RestDispatcher.request`.
        """

        return await self.dispatcher.request(
            method,
            path,
            json=json,
            form_data=form_data,
            attachments=attachments,
            reason=reason,
            authenticated=authenticated,
        )

    async def get_gateway_info(self) -> GatewayResponse:
        """
        Gets the gateway info that the current bot should connect to.
        """

        resp = await self.request("GET", self.endpoints.GET_GATEWAY)

        return CONVERTER.structure(resp.json(), GatewayResponse)

    async def send_message(
        self,
        *,
        channel_id: int,
        content: str | None = None,
        embed: Embed | Iterable[Embed] | None = None,
        nonce: int | str | None = None,
        tts: bool = False,
        attachments: Iterable[Attachment] = (),
    ) -> RawMessage:
        """
        Sends a single message to a channel.

        :param channel_id: The ID of the channel to send the message to.
        :param content: The textual content to send. Optional if this message contains an embed or
            an attachment(s).

        :param embed: A :class:`.Embed` instance, or iterable of such instances, to send. Optional
            if the message contains regular textual content or attachments.

        :param nonce: A nonce to identify this message with in the ``MESSAGE_CREATE`` event. This
            must fit into an unsigned 64-bit integer.

        :param tts: If True, this message will be sent as text-to-speech.
        :param attachments: A list of files to upload alongside this message.
        :return: A :class:`.RawMessage` representing the created message object returned from
            Discord.
        """

        attachments = tuple(attachments)
        body = _message_body(content=content, embed=embed, tts=tts, nonce=nonce)

        if "content" not in body and "embeds" not in body and not attachments:
            raise ValueError("Expected one of content, embed, or attachments to be passed!")

        resp = await self.request(
            "POST",
            self.endpoints.CHANNEL_MESSAGES.format(channel_id=channel_id),
            json=body,
            attachments=attachments,
        )

        return CONVERTER.structure(resp.json(), RawMessage)

    async def delete_message(
        self, *, channel_id: int, message_id: int, reason: str | None = None
    ) -> None:
        """
        Deletes a single message from a channel.

        :param channel_id: The ID of the channel that the message is within.
        :param message_id: The ID of the message to delete.
        :param reason: An optional audit log reason.
        """

        await self.request(
            "DELETE",
            self.endpoints.CHANNEL_INDIVIDUAL_MESSAGE.format(
                channel_id=channel_id, message_id=message_id
            ),
            reason=reason,
        )

    async def create_interaction_response(
        self,
        interaction: Interaction,
        *,
        response_type: InteractionResponseType = InteractionResponseType.CHANNEL_MESSAGE,
        content: str | None = None,
        embed: Embed | Iterable[Embed] | None = None,
        ephemeral: bool = False,
        attachments: Iterable[Attachment] = (),
    ) -> None:
        """
        Responds to an interaction. This has to happen within three seconds of receiving it; use
        a deferred response type to buy some more time, and then :meth:`.create_followup_message`.

        :param interaction: The :class:`.Interaction` to respond to.
        :param response_type: The kind of response. Deferred responses take no content.
        :param content: The textual content of the response, if any.
        :param embed: The embed(s) to respond with, if any.
        :param ephemeral: If True, only the invoking user will see the response.
        :param attachments: A list of files to upload alongside the response.
        """

        if interaction.expired:
            raise ValueError(f"Interaction {interaction.id} has expired")

        data = _message_body(content=content, embed=embed, ephemeral=ephemeral)
        body: dict[str, Any] = {"type": int(response_type)}
        if data:
            body["data"] = data

        await self.request(
            "POST",
            self.endpoints.INTERACTION_CALLBACK.format(
                interaction_id=interaction.id, interaction_token=interaction.token
            ),
            json=body,
            attachments=attachments,
            authenticated=False,
        )

    async def create_followup_message(
        self,
        interaction: Interaction,
        *,
        content: str | None = None,
        embed: Embed | Iterable[Embed] | None = None,
        ephemeral: bool = False,
        attachments: Iterable[Attachment] = (),
    ) -> RawMessage:
        """
        Sends a followup message for an interaction that has already been responded to.

        :return: A :class:`.RawMessage` for the followup message.
        """

        if interaction.expired:
            raise ValueError(f"Interaction {interaction.id} has expired")

        attachments = tuple(attachments)
        body = _message_body(content=content, embed=embed, ephemeral=ephemeral)
        if "content" not in body and "embeds" not in body and not attachments:
            raise ValueError("Expected one of content, embed, or attachments to be passed!")

        resp = await self.request(
            "POST",
            self.endpoints.WEBHOOK_MESSAGES.format(
                application_id=interaction.application_id,
                interaction_token=interaction.token,
            ),
            json=body,
            attachments=attachments,
            authenticated=False,
        )

        return CONVERTER.structure(resp.json(), RawMessage)

    def close(self) -> None:
        """
        Shuts down the request dispatcher, failing every request that hasn't been sent yet.
        """

        self.dispatcher.close()
