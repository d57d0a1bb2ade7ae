from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import final

import anyio
import httpx
from stickney import open_ws_connection

from kotone.config import ClientOptions
from kotone.gateway.collection import GatewayCollection
from kotone.gateway.conn import Connector
from kotone.http.client import KotoneHttpClient
from kotone.http.response import GatewayResponse
from kotone.util import cancel_on_close


@final
class KotoneBot:
    """
    Primary bot class. This is a wrapper class that owns the various machinery required to connect
    to Discord.
    """

    def __init__(
        self,
        *,
        http: KotoneHttpClient,
        gw: GatewayResponse,
        token: str,
        options: ClientOptions | None = None,
    ) -> None:
        #: The HTTP client that is used for making HTTP requests. This is pre-configured with
        #: authentication and ratelimit support, and can be used directly to access endpoints that
        #: are not otherwise exposed.
        self.http: KotoneHttpClient = http

        #: The cached gateway response created when the bot opened.
        self.cached_gateway_info: GatewayResponse = gw

        #: The options this bot was opened with.
        self.options: ClientOptions = options or ClientOptions()

        self.__token = token

    @asynccontextmanager
    async def start_receiving_events(
        self,
        *,
        connect: Connector = open_ws_connection,
    ) -> AsyncGenerator[GatewayCollection, None]:
        """
        Starts receiving inbound events from the gateway on all available shards. Every shard is
        shut down when the context manager exits.
        """

        async with cancel_on_close(anyio.create_task_group()) as nursery:
            wrapper = GatewayCollection(
                nursery,
                self.__token,
                self.cached_gateway_info.url,
                self.cached_gateway_info.shards,
                options=self.options,
                connect=connect,
            )
            wrapper.start_all()

            try:
                yield wrapper
            finally:
                wrapper.close()


@asynccontextmanager
async def open_bot(
    token: str,
    *,
    options: ClientOptions | None = None,
    httpx_client: httpx.AsyncClient | None = None,
) -> AsyncGenerator[KotoneBot, None]:
    """
    Opens a new :class:`.KotoneBot` instance. This is an async context manager function.

    :param token: The token to connect to Discord with.
    :param options: The :class:`.ClientOptions` to use. The defaults are fine for most bots.
    :param httpx_client: An ``httpx`` client to use instead of creating a new one. It is closed
        along with the bot.
    """

    options = options or ClientOptions()

    async with (
        (httpx_client or httpx.AsyncClient()) as client,
        cancel_on_close(anyio.create_task_group()) as http_nursery,
    ):
        http = KotoneHttpClient(
            httpx_client=client, nursery=http_nursery, token=token, options=options
        )

        try:
            gateway = await http.get_gateway_info()
            yield KotoneBot(http=http, gw=gateway, token=token, options=options)
        finally:
            http.close()
