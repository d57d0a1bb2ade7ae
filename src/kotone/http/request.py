from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, final

import anyio
import attr
from httpx import Response

from kotone.exc import RequestCancelledError
from kotone.http.route import Route


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class Attachment:
    """
    A single file uploaded alongside a request.
    """

    #: The filename to upload this file as.
    filename: str = attr.ib()

    #: The raw content of this file.
    content: bytes = attr.ib(repr=False)

    #: The MIME type of this file.
    content_type: str = attr.ib(default="application/octet-stream")


@attr.s(frozen=True, slots=True, kw_only=True)
@final
class ApiRequest:
    """
    A single, not yet sent, request to the HTTP API.
    """

    #: The HTTP method for the request.
    method: str = attr.ib(converter=str.upper)

    #: The path to request. This is not the full URL.
    path: str = attr.ib()

    #: The body data that will be encoded as JSON, if any. If there are attachments, this is sent
    #: as the ``payload_json`` form field instead.
    json: Any = attr.ib(default=None)

    #: The body data that will be encoded as HTTP form data, if any.
    form_data: Mapping[str, str] | None = attr.ib(default=None)

    #: Files to upload as a multipart body.
    attachments: tuple[Attachment, ...] = attr.ib(default=(), converter=tuple)

    #: Additional headers to send.
    headers: Mapping[str, str] = attr.ib(factory=dict)

    #: The audit log reason for an action, if any.
    reason: str | None = attr.ib(default=None)

    #: If False, the Authorization header will be stripped (e.g. for interaction webhooks).
    authenticated: bool = attr.ib(default=True)


class RequestFuture:
    """
    The eventual result of a dispatched request. This settles exactly once; any further attempts
    to settle it are ignored.
    """

    def __init__(self, route: Route) -> None:
        #: The route of the request this future is for.
        self.route: Route = route

        self._event = anyio.Event()
        self._response: Response | None = None
        self._error: BaseException | None = None
        self._on_cancel: Callable[[], bool] | None = None

    @property
    def done(self) -> bool:
        """
        If this future has been settled, successfully or not.
        """

        return self._event.is_set()

    @property
    def cancelled(self) -> bool:
        """
        If this future was settled by cancelling the request.
        """

        return isinstance(self._error, RequestCancelledError)

    def resolve(self, response: Response) -> bool:
        """
        Settles this future successfully. Returns False if it was already settled.
        """

        if self.done:
            return False

        self._response = response
        self._event.set()
        return True

    def fail(self, error: BaseException) -> bool:
        """
        Settles this future with an error. Returns False if it was already settled.
        """

        if self.done:
            return False

        self._error = error
        self._event.set()
        return True

    def cancel(self) -> bool:
        """
        Cancels the request if it hasn't been sent yet. Requests that are already in flight are
        left alone.

        :return: True if the request was removed from its queue and this future was failed with a
            :class:`.RequestCancelledError`.
        """

        if self.done:
            return False

        if self._on_cancel is not None and not self._on_cancel():
            return False

        return self.fail(RequestCancelledError(route=str(self.route)))

    async def wait(self) -> Response:
        """
        Waits for the request to settle, returning the response or raising the error it failed
        with.
        """

        await self._event.wait()

        if self._error is not None:
            raise self._error

        assert self._response is not None
        return self._response


@attr.s(slots=True, kw_only=True, eq=False)
class QueuedRequest:
    """
    A request sitting in (or being processed by) a route's request handler.
    """

    #: The route this request belongs to.
    route: Route = attr.ib()

    #: The request itself.
    request: ApiRequest = attr.ib()

    #: The future handed back to the caller.
    future: RequestFuture = attr.ib()

    #: The number of times this request has been sent.
    attempts: int = attr.ib(default=0)

    #: The number of times this request has been ratelimited.
    ratelimit_retries: int = attr.ib(default=0)

    #: If the request is currently on the wire.
    in_flight: bool = attr.ib(default=False)
