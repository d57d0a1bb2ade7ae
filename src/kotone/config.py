from __future__ import annotations

import enum

import attr

# All intents, including the privileged ones.
DEFAULT_INTENTS = (1 << 22) - 1


class RequestMode(enum.Enum):
    """
    How a single route's request queue is drained.
    """

    #: One request at a time; responses settle in the order requests were made.
    SEQUENTIAL = "sequential"

    #: As many requests in flight as the bucket allows. No ordering guarantees.
    BURST = "burst"


def _positive(instance: object, attribute: attr.Attribute, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{attribute.name} must be positive, not {value!r}")


@attr.s(frozen=True, slots=True, kw_only=True)
class ClientOptions:
    """
    Tunables for the HTTP and gateway machinery. The defaults are sane for a regular bot.
    """

    #: The mode that per-route request handlers run in.
    request_mode: RequestMode = attr.ib(default=RequestMode.SEQUENTIAL, converter=RequestMode)

    #: The maximum number of attempts for a request failing with network or server errors.
    max_attempts: int = attr.ib(default=5, validator=_positive)

    #: The maximum number of times a single request will be retried after a 429.
    max_ratelimit_retries: int = attr.ib(default=5, validator=_positive)

    #: The delay, in seconds, before the first retry of a failed request. Doubles every attempt.
    backoff_base: float = attr.ib(default=2.0, validator=_positive)

    #: The upper bound, in seconds, of the delay between retries of a failed request.
    backoff_cap: float = attr.ib(default=30.0, validator=_positive)

    #: If True, ``Retry-After`` values are milliseconds. Otherwise, they are seconds.
    retry_after_in_milliseconds: bool = attr.ib(default=True)

    #: The base URL that HTTP requests are sent to.
    base_url: str = attr.ib(default="https://discord.com")

    #: The path prefix of the versioned API.
    api_base: str = attr.ib(default="/api/v10")

    #: A custom User-Agent header to send. Derived from the package version if None.
    user_agent: str | None = attr.ib(default=None)

    #: The gateway protocol version to request.
    gateway_version: int = attr.ib(default=10)

    #: The gateway intents to identify with.
    intents: int = attr.ib(default=DEFAULT_INTENTS)

    #: The member count above which a guild is considered large.
    large_threshold: int = attr.ib(default=50)

    #: The number of invalid sessions in a row before the gateway gives up.
    max_invalid_sessions: int = attr.ib(default=5, validator=_positive)

    #: The upper bound, in seconds, between failed gateway connection attempts.
    reconnect_backoff_cap: float = attr.ib(default=60.0, validator=_positive)

    #: How long, in seconds, a fresh gateway connection has to send HELLO before it is dropped.
    hello_timeout: float = attr.ib(default=41.25, validator=_positive)

    def backoff_for(self, attempt: int) -> float:
        """
        Gets the delay before retrying after the ``attempt``-th failed attempt (starting at 1).
        """

        return min(self.backoff_base * 2 ** (attempt - 1), self.backoff_cap)
