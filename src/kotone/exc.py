from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import attr


class DiscordError(Exception):
    """
    Base type for all Discord-related errors.
    """


@attr.s(slots=True, str=True)
class HttpApiError(DiscordError):
    """
    Base class for all HTTP API related errors.
    """

    #: The HTTP status code for this response.
    status_code: int = attr.ib()


@attr.s(slots=True, str=True)
class HttpApiRequestError(HttpApiError):
    """
    Raised when Discord rejects a request as invalid (any 4xx other than a 429). These are never
    retried.
    """

    @classmethod
    def from_response(cls, status_code: int, body: Mapping[str, Any] | None) -> HttpApiRequestError:
        """
        Creates a new :class:`.HttpApiRequestError` from the provided response body.
        """

        # some proxies in front of discord return html or an empty body on a 4xx.
        if not isinstance(body, Mapping):
            body = {}

        code: int = body.get("code", 0)
        message: str = body.get("message", "")
        errors: Any = body.get("errors", [])

        return HttpApiRequestError(
            status_code=status_code, error_code=code, error_message=message, errors=errors
        )

    #: The actual error code for this HTTP response.
    error_code: int = attr.ib()

    #: The human-readable error code for this HTTP response.
    error_message: str = attr.ib()

    #: The list of specific body-related errors within this HTTP response.
    errors: Any = attr.ib(factory=list, repr=False)


@attr.s(slots=True, str=True)
class HttpServerError(HttpApiError):
    """
    Raised when Discord kept returning server errors until the attempt budget ran out.
    """

    #: The number of attempts made before giving up.
    attempts: int = attr.ib()


@attr.s(slots=True, str=True)
class RateLimitExhaustedError(HttpApiError):
    """
    Raised when a request was ratelimited more times than the configured retry budget allows.
    """

    #: The route key of the request.
    route: str = attr.ib()

    #: The last ``retry_after`` value, in seconds.
    retry_after: float = attr.ib()

    #: If the last ratelimit was a global one.
    is_global: bool = attr.ib(default=False)

    #: The number of times the request was ratelimited.
    attempts: int = attr.ib(default=0)


@attr.s(slots=True, str=True)
class HttpNetworkError(DiscordError):
    """
    Raised when a request kept failing at the transport level until the attempt budget ran out.
    The last underlying error is available as ``__cause__``.
    """

    method: str = attr.ib()
    path: str = attr.ib()
    attempts: int = attr.ib()


@attr.s(slots=True, str=True)
class RequestCancelledError(DiscordError):
    """
    Raised when a queued request was cancelled before it was sent.
    """

    #: The route key of the cancelled request.
    route: str = attr.ib()


class GatewayError(DiscordError):
    """
    Base class for errors coming from a gateway connection.
    """


@attr.s(slots=True, str=True)
class SessionInvalidatedError(GatewayError):
    """
    Raised when the gateway invalidated our session too many times in a row.
    """

    #: The number of consecutive invalid sessions received.
    attempts: int = attr.ib()


@attr.s(slots=True, str=True)
class GatewayFatalError(GatewayError):
    """
    Raised when the gateway closed the connection in a way that cannot be recovered from, such as
    an invalid token or disallowed intents.
    """

    #: The close code sent by the gateway.
    code: int = attr.ib()

    #: The close reason sent by the gateway.
    reason: str = attr.ib(default="")
