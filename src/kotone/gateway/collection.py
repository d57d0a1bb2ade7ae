import logging
from collections.abc import AsyncIterator
from functools import partial

import anyio
import attr
from anyio import CancelScope
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectSendStream
from stickney import open_ws_connection

from kotone.config import ClientOptions
from kotone.gateway.conn import Connector, run_gateway_loop
from kotone.gateway.event import (
    IncomingGatewayEvent,
    OutgoingGatewayEvent,
)

logger: logging.Logger = logging.getLogger(__name__)


@attr.s()
class GatewayWrapper:
    """
    Wraps state about an open Gateway connection.
    """

    write_channel: MemoryObjectSendStream[OutgoingGatewayEvent] = attr.ib()
    scope: CancelScope = attr.ib()


class GatewayCollection:
    """
    Wraps a series of running gateway tasks, one per shard. Iterating over this yields the
    incoming events of every shard, in the order they arrived on each shard.
    """

    def __init__(
        self,
        nursery: TaskGroup,
        token: str,
        initial_url: str,
        shard_count: int,
        *,
        options: ClientOptions | None = None,
        connect: Connector = open_ws_connection,
    ):
        #: The list of (shard id -> outgoing event) for all the connected gateways.
        self._gateway_ctl_channels: list[GatewayWrapper | None] = [None] * shard_count

        #: The nursery to spawn gateway loops into.
        self._nursery = nursery

        self._token = token
        self._initial_url = initial_url
        self._shard_count = shard_count
        self._options = options or ClientOptions()
        self._connect = connect

        self._event_write, self._event_read = anyio.create_memory_object_stream[
            IncomingGatewayEvent
        ]()

    @property
    def shard_count(self) -> int:
        """
        The number of shards in this collection.
        """

        return self._shard_count

    def __aiter__(self) -> AsyncIterator[IncomingGatewayEvent]:
        return aiter(self._event_read)

    async def _run_gateway_loop(
        self,
        *,
        shard_id: int,
    ) -> None:
        with CancelScope() as scope, self._event_write.clone() as event_channel:
            outbound_write, outbound_read = anyio.create_memory_object_stream[
                OutgoingGatewayEvent
            ]()
            wrapped = GatewayWrapper(outbound_write, scope)
            self._gateway_ctl_channels[shard_id] = wrapped

            try:
                await run_gateway_loop(
                    token=self._token,
                    initial_url=self._initial_url,
                    shard_id=shard_id,
                    shard_count=self._shard_count,
                    outbound_channel=outbound_read,
                    inbound_channel=event_channel,
                    options=self._options,
                    connect=self._connect,
                )
            finally:
                logger.debug(f"Terminated gateway connection for shard {shard_id}")
                outbound_read.close()
                outbound_write.close()
                self._gateway_ctl_channels[shard_id] = None

    def start_shard(self, shard_id: int) -> None:
        """
        Starts the gateway task for a single shard.
        """

        if not 0 <= shard_id < self._shard_count:
            raise IndexError(f"Invalid shard {shard_id}")

        self._nursery.start_soon(partial(self._run_gateway_loop, shard_id=shard_id))

    def start_all(self) -> None:
        """
        Starts the gateway tasks for every shard.
        """

        for shard_id in range(self._shard_count):
            self.start_shard(shard_id)

    async def send_to_shard(
        self,
        shard_id: int,
        message: OutgoingGatewayEvent,
    ) -> None:
        """
        Sends a single outgoing gateway message.
        """

        shard = self._gateway_ctl_channels[shard_id]
        if shard is None:
            raise IndexError(f"Invalid shard {shard_id}")

        await shard.write_channel.send(message)

    def close(self) -> None:
        """
        Shuts down every shard. The gateway tasks close their websockets and exit; the event
        iterator ends once they have.
        """

        for shard in self._gateway_ctl_channels:
            if shard is not None:
                shard.scope.cancel()

        self._event_write.close()

    async def drain_forever(self) -> None:
        """
        Drains all events on the gateway channels forever.
        """

        async for _ in self:
            pass
