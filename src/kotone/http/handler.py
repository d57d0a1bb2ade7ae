from __future__ import annotations

import abc
import enum
from collections import deque
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any, NoReturn, TypeAlias, final

import anyio
import httpx
import structlog
from anyio import CancelScope
from anyio.abc import TaskGroup
from httpx import Response
from typing_extensions import override

from kotone.config import ClientOptions
from kotone.exc import (
    HttpApiError,
    HttpApiRequestError,
    HttpNetworkError,
    HttpServerError,
    RateLimitExhaustedError,
    RequestCancelledError,
)
from kotone.http.ratelimit import BucketTable, GlobalLimitGate, RateLimitBucket, RateLimitHeaders
from kotone.http.request import ApiRequest, QueuedRequest
from kotone.http.route import Route

logger: structlog.stdlib.BoundLogger = structlog.get_logger(name=__name__)

Sender: TypeAlias = Callable[[ApiRequest], Awaitable[Response]]


class HandlerState(enum.Enum):
    """
    What a :class:`.RequestHandler` is currently doing.
    """

    #: Nothing queued.
    IDLE = "idle"

    #: At least one request is on the wire.
    SENDING = "sending"

    #: Waiting for the route's bucket or the global ratelimit to reset.
    LIMITED = "limited"


def _json_or_none(response: Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class RequestHandler(abc.ABC):
    """
    Owns the request queue for a single :class:`.Route`, and drains it against the route's
    ratelimit bucket and the global ratelimit.
    """

    def __init__(
        self,
        route: Route,
        *,
        table: BucketTable,
        gate: GlobalLimitGate,
        sender: Sender,
        options: ClientOptions,
        nursery: TaskGroup,
    ) -> None:
        """
        :param route: The route this handler is for.
        :param table: The shared table of ratelimit buckets.
        :param gate: The shared global ratelimit gate.
        :param sender: The function that actually puts a request on the wire.
        :param options: The client options, for retry ceilings and backoff.
        :param nursery: The task group to spawn this handler's worker task in.
        """

        self.route: Route = route

        #: What this handler is currently doing.
        self.state: HandlerState = HandlerState.IDLE

        self._table = table
        self._gate = gate
        self._sender = sender
        self._options = options

        self._queue: deque[QueuedRequest] = deque()
        # dequeued, but not finished with yet.
        self._active: set[QueuedRequest] = set()
        self._wakeup = anyio.Event()
        self._scope: CancelScope | None = None
        self._closed = False

        self.logger = logger.bind(route=str(route))
        nursery.start_soon(self._run)

    def __len__(self) -> int:
        return len(self._queue)

    def _set_state(self, state: HandlerState) -> None:
        if state != self.state:
            self.logger.debug("Handler state changed", old=self.state.value, new=state.value)
            self.state = state

    def push(self, queued: QueuedRequest) -> None:
        """
        Adds a request to the back of this handler's queue.
        """

        if self._closed:
            queued.future.fail(RequestCancelledError(route=str(self.route)))
            return

        queued.future._on_cancel = partial(self._remove, queued)
        self._queue.append(queued)
        self._wakeup.set()

    def _requeue(self, queued: QueuedRequest) -> None:
        # retries go to the front, so they don't lose their place in line.
        self._queue.appendleft(queued)
        self._wakeup.set()

    def _remove(self, queued: QueuedRequest) -> bool:
        if queued.in_flight:
            return False

        try:
            self._queue.remove(queued)
        except ValueError:
            # already dequeued and waiting on a ratelimit; the worker skips settled requests.
            pass

        self.logger.debug("Cancelled queued request", path=queued.request.path)
        return True

    async def _next_request(self) -> QueuedRequest:
        while True:
            while not self._queue:
                self._set_state(HandlerState.IDLE)
                self._wakeup = anyio.Event()
                await self._wakeup.wait()

            queued = self._queue.popleft()
            if not queued.future.done:
                self._active.add(queued)
                return queued

    async def _reserve(self, queued: QueuedRequest) -> RateLimitBucket | None:
        """
        Waits for both the global ratelimit and the route's bucket, and reserves a slot. Returns
        None if the request was cancelled in the meantime.
        """

        while True:
            if self._gate.limited:
                self._set_state(HandlerState.LIMITED)
                self.logger.info("Waiting for global ratelimit", retry_at=self._gate.retry_at)
                await self._gate.wait()

            bucket = self._table.get_bucket(self.route)
            if bucket.is_exhausted():
                self._set_state(HandlerState.LIMITED)

            await bucket.acquire()

            if self._table.get_bucket(self.route) is not bucket:
                # the route was moved onto a shared bucket while we were waiting.
                bucket.refund()
                continue

            if queued.future.done:
                bucket.refund()
                self._active.discard(queued)
                return None

            if self._gate.limited:
                # somebody got globally ratelimited while we were waiting on our bucket.
                bucket.refund()
                continue

            return bucket

    async def _send(self, queued: QueuedRequest, bucket: RateLimitBucket) -> None:
        try:
            await self._send_once(queued, bucket)
        finally:
            self._active.discard(queued)

    async def _send_once(self, queued: QueuedRequest, bucket: RateLimitBucket) -> None:
        """
        Sends a request once, and settles, re-queues, or schedules a retry depending on the result.
        """

        request = queued.request

        if self._gate.limited or queued.future.done:
            # in burst mode, somebody can get globally ratelimited (or this request can be
            # cancelled) between reserving the slot and getting here.
            bucket.refund()
            if not queued.future.done:
                self._requeue(queued)

            return

        queued.attempts += 1
        queued.in_flight = True
        self._set_state(HandlerState.SENDING)
        self.logger.debug(
            "HTTP request pending",
            method=request.method,
            path=request.path,
            attempt=queued.attempts,
        )

        try:
            response = await self._sender(request)
        except (OSError, httpx.RequestError) as e:
            queued.in_flight = False
            bucket.release()

            self.logger.warning(
                "HTTP request failed",
                exc_info=e,
                method=request.method,
                path=request.path,
                attempt=queued.attempts,
            )
            error = HttpNetworkError(
                method=request.method, path=request.path, attempts=queued.attempts
            )
            error.__cause__ = e
            await self._retry_later(queued, error)
            return

        queued.in_flight = False
        try:
            info = RateLimitHeaders.from_response(
                response, retry_after_in_milliseconds=self._options.retry_after_in_milliseconds
            )
        except ValueError:
            self.logger.warning(
                "Unparseable ratelimit headers",
                path=request.path,
                headers={k: v for k, v in response.headers.items() if k.startswith("x-ratelimit")},
            )
            info = RateLimitHeaders()

        self._table.complete(self.route, bucket, info)

        status = response.status_code
        self.logger.debug(
            "HTTP request completed",
            method=request.method,
            path=request.path,
            attempt=queued.attempts,
            status=status,
        )

        if 200 <= status < 300:
            queued.future.resolve(response)
            return

        if status == 429:
            self._handle_ratelimited(queued, info)
            return

        if 500 <= status < 600:
            self.logger.warning(
                "Server-side error during HTTP request",
                method=request.method,
                path=request.path,
                status=status,
            )
            await self._retry_later(
                queued, HttpServerError(status_code=status, attempts=queued.attempts)
            )
            return

        if 400 <= status < 500:
            queued.future.fail(HttpApiRequestError.from_response(status, _json_or_none(response)))
            return

        queued.future.fail(HttpApiError(status_code=status))

    def _handle_ratelimited(self, queued: QueuedRequest, info: RateLimitHeaders) -> None:
        retry_after = info.retry_after if info.retry_after is not None else info.reset_after
        if retry_after is None:
            retry_after = 1.0

        queued.ratelimit_retries += 1
        self.logger.warning(
            "Ratelimited",
            path=queued.request.path,
            retry_after=retry_after,
            is_global=info.is_global,
            retries=queued.ratelimit_retries,
        )

        if queued.ratelimit_retries > self._options.max_ratelimit_retries:
            queued.future.fail(
                RateLimitExhaustedError(
                    status_code=429,
                    route=str(self.route),
                    retry_after=retry_after,
                    is_global=info.is_global,
                    attempts=queued.ratelimit_retries,
                )
            )
            return

        if info.is_global:
            self._gate.trip(retry_after)
        else:
            self._table.get_bucket(self.route).exhaust(retry_after)

        self._requeue(queued)

    async def _retry_later(self, queued: QueuedRequest, error: Exception) -> None:
        if queued.attempts >= self._options.max_attempts:
            self.logger.warning(
                "Giving up on HTTP request", path=queued.request.path, attempts=queued.attempts
            )
            queued.future.fail(error)
            return

        delay = self._options.backoff_for(queued.attempts)
        self.logger.info("Retrying HTTP request", path=queued.request.path, delay=delay)
        await anyio.sleep(delay)

        if not queued.future.done:
            self._requeue(queued)

    async def _run(self) -> None:
        with CancelScope() as scope:
            self._scope = scope
            if self._closed:
                return

            await self._drain()

    @abc.abstractmethod
    async def _drain(self) -> NoReturn:
        """
        Processes the queue forever.
        """

        ...

    def close(self) -> None:
        """
        Stops this handler, failing every request that hasn't settled yet.
        """

        self._closed = True
        if self._scope is not None:
            self._scope.cancel()

        for queued in (*self._queue, *self._active):
            queued.future.fail(RequestCancelledError(route=str(self.route)))

        self._queue.clear()
        self._active.clear()


@final
class SequentialRequestHandler(RequestHandler):
    """
    Sends one request at a time, settling each one before the next is started.
    """

    @override
    async def _drain(self) -> NoReturn:
        while True:
            queued = await self._next_request()
            bucket = await self._reserve(queued)
            if bucket is None:
                continue

            await self._send(queued, bucket)


@final
class BurstRequestHandler(RequestHandler):
    """
    Sends as many requests at once as the route's bucket allows.
    """

    @override
    async def _drain(self) -> NoReturn:
        async with anyio.create_task_group() as nursery:
            while True:
                queued = await self._next_request()
                bucket = await self._reserve(queued)
                if bucket is None:
                    continue

                nursery.start_soon(self._send, queued, bucket)
