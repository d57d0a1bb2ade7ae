from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, final
from urllib.parse import quote

import structlog
from anyio.abc import TaskGroup
from httpx import AsyncClient, Response

from kotone.config import ClientOptions, RequestMode
from kotone.exc import RequestCancelledError
from kotone.http.handler import BurstRequestHandler, RequestHandler, SequentialRequestHandler
from kotone.http.ratelimit import BucketTable, GlobalLimitGate
from kotone.http.request import ApiRequest, Attachment, QueuedRequest, RequestFuture
from kotone.http.route import Route

logger: structlog.stdlib.BoundLogger = structlog.get_logger(name=__name__)


@final
class RestDispatcher:
    """
    Routes outgoing HTTP requests to the :class:`.RequestHandler` for their route, creating
    handlers as needed. This owns all of the ratelimit state for one client: the bucket table and
    the global ratelimit gate live and die with it.
    """

    def __init__(
        self,
        *,
        nursery: TaskGroup,
        httpx_client: AsyncClient,
        options: ClientOptions | None = None,
    ) -> None:
        """
        :param nursery: The task group to spawn request handler tasks in.
        :param httpx_client: The ``httpx`` ``AsyncClient`` to send the actual requests on. This
            should already be configured with the base URL and authentication headers.
        :param options: The :class:`.ClientOptions` controlling retries and the handler type.
        """

        self._nursery = nursery
        self._http = httpx_client
        self._options = options or ClientOptions()

        #: The table of ratelimit buckets shared by every handler.
        self.buckets: BucketTable = BucketTable()

        #: The global ratelimit gate shared by every handler.
        self.global_gate: GlobalLimitGate = GlobalLimitGate()

        self._handlers: dict[Route, RequestHandler] = {}
        self._closed = False

    @property
    def handlers(self) -> Mapping[Route, RequestHandler]:
        """
        A read-only view of the per-route request handlers created so far.
        """

        return MappingProxyType(self._handlers)

    def _handler_type(self) -> type[RequestHandler]:
        match self._options.request_mode:
            case RequestMode.SEQUENTIAL:
                return SequentialRequestHandler
            case RequestMode.BURST:
                return BurstRequestHandler

    def get_handler(self, route: Route) -> RequestHandler:
        """
        Gets the handler for the provided route, creating it if this is the first request on it.
        """

        # there's no await between the lookup and the insert, so two callers can never both
        # create a handler for the same route.
        handler = self._handlers.get(route)
        if handler is None:
            logger.debug("Creating request handler", route=str(route))
            handler = self._handler_type()(
                route,
                table=self.buckets,
                gate=self.global_gate,
                sender=self._send,
                options=self._options,
                nursery=self._nursery,
            )
            self._handlers[route] = handler

        return handler

    def dispatch(self, request: ApiRequest) -> RequestFuture:
        """
        Queues a request on its route's handler. This never blocks.

        :return: A :class:`.RequestFuture` that settles once the request has either succeeded or
            failed for good.
        """

        route = Route.from_request(request.method, request.path, self._options.api_base)
        future = RequestFuture(route)

        if self._closed:
            future.fail(RequestCancelledError(route=str(route)))
            return future

        queued = QueuedRequest(route=route, request=request, future=future)
        self.get_handler(route).push(queued)
        return future

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        form_data: Mapping[str, str] | None = None,
        attachments: Iterable[Attachment] = (),
        headers: Mapping[str, str] | None = None,
        reason: str | None = None,
        authenticated: bool = True,
    ) -> Response:
        """
        Performs a request to the specified endpoint path, waiting for it to complete. This will
        automatically deal with rate limits and retries.

        :param method: The HTTP method for the request.
        :param path: The path to request. This is not the full URL.

        Optional parameters:

        :param json: The body data that will be encoded as JSON, if any.
        :param form_data: The body data that will be encoded as HTTP form data, if any.
        :param attachments: Files to upload alongside the request.
        :param headers: Additional headers to send.
        :param reason: The audit log reason for an action, if any.
        :param authenticated: If False, the request is sent without the Authorization header.
        """

        future = self.dispatch(
            ApiRequest(
                method=method,
                path=path,
                json=json,
                form_data=form_data,
                attachments=attachments,
                headers=headers or {},
                reason=reason,
                authenticated=authenticated,
            )
        )
        return await future.wait()

    async def _send(self, request: ApiRequest) -> Response:
        files: list[tuple[str, tuple[str, bytes, str]]] | None = None
        body_json: Any = request.json
        data: dict[str, str] | None = dict(request.form_data) if request.form_data else None

        if request.attachments:
            files = [
                (f"files[{idx}]", (a.filename, a.content, a.content_type))
                for idx, a in enumerate(request.attachments)
            ]

            data = data or {}
            if body_json is not None:
                data["payload_json"] = json.dumps(body_json)
                body_json = None

        req = self._http.build_request(
            method=request.method, url=request.path, json=body_json, data=data, files=files
        )
        req.headers.update(request.headers)

        if request.reason is not None:
            req.headers["X-Audit-Log-Reason"] = quote(request.reason, safe=" ")

        if not request.authenticated:
            req.headers.pop("Authorization", None)

        return await self._http.send(req)

    def close(self) -> None:
        """
        Shuts down every request handler. Requests that haven't settled yet are failed with a
        :class:`.RequestCancelledError`, and any further requests are rejected.
        """

        self._closed = True
        for handler in self._handlers.values():
            handler.close()
