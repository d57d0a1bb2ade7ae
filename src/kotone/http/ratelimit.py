from __future__ import annotations

import time
from collections.abc import Mapping
from email.utils import parsedate_to_datetime
from typing import Any

import anyio
import attr
import structlog
from httpx import Response

from kotone.http.route import Route
from kotone.util import maybe_float, maybe_int

logger: structlog.stdlib.BoundLogger = structlog.get_logger(name=__name__)

# Design notes.
#
# There's no locks in here. Every mutation of bucket or gate state happens in a stretch of code
# with no await in it, so under cooperative scheduling each one is atomic. All of the waiting
# (sleep_until, Event.wait) happens *outside* of those stretches, so nobody ever waits while
# holding anything.


@attr.s(frozen=True, slots=True, kw_only=True)
class RateLimitHeaders:
    """
    The ratelimit information read from a single HTTP response.
    """

    #: The total number of requests per window, if sent.
    limit: int | None = attr.ib(default=None)

    #: The remaining number of requests in this window, if sent.
    remaining: int | None = attr.ib(default=None)

    #: The number of seconds until the window resets, if known.
    reset_after: float | None = attr.ib(default=None)

    #: The server-assigned bucket hash, if sent.
    bucket_hash: str | None = attr.ib(default=None)

    #: The number of seconds to wait before retrying, on a 429.
    retry_after: float | None = attr.ib(default=None)

    #: If this response signals the *global* ratelimit.
    is_global: bool = attr.ib(default=False)

    @classmethod
    def from_response(
        cls,
        response: Response,
        *,
        retry_after_in_milliseconds: bool = True,
        now: float | None = None,
    ) -> RateLimitHeaders:
        """
        Parses ratelimit information out of the headers (and, for 429s, the body) of a response.

        :param response: The response to parse.
        :param retry_after_in_milliseconds: If ``Retry-After`` values are in milliseconds.
        :param now: The current Unix time, used only when the server omits a ``Date`` header.
        """

        headers = response.headers
        body: Mapping[str, Any] = {}
        if response.status_code == 429:
            try:
                parsed = response.json()
            except ValueError:
                parsed = None

            if isinstance(parsed, Mapping):
                body = parsed

        retry_after = maybe_float(body.get("retry_after", headers.get("Retry-After")))
        if retry_after is not None and retry_after_in_milliseconds:
            retry_after /= 1000.0

        is_global = (
            headers.get("X-RateLimit-Global", "").lower() == "true"
            or body.get("global", False) is True
        )

        # prefer the relative header, which doesn't care about whose clock is right.
        reset_after = maybe_float(headers.get("X-RateLimit-Reset-After"))
        if reset_after is None:
            reset_at = maybe_float(headers.get("X-RateLimit-Reset"))
            if reset_at is not None:
                reset_after = max(reset_at - _server_time(headers, now), 0.0)

        return cls(
            limit=maybe_int(headers.get("X-RateLimit-Limit")),
            remaining=maybe_int(headers.get("X-RateLimit-Remaining")),
            reset_after=reset_after,
            bucket_hash=headers.get("X-RateLimit-Bucket"),
            retry_after=retry_after,
            is_global=is_global,
        )


def _server_time(headers: Mapping[str, str], now: float | None) -> float:
    """
    Gets the server's idea of the current Unix time from the ``Date`` header, falling back to ours.
    """

    date = headers.get("Date")
    if date is not None:
        try:
            return parsedate_to_datetime(date).timestamp()
        except (TypeError, ValueError):
            logger.warning("Unparseable Date header", date=date)

    return time.time() if now is None else now


@attr.s(slots=True, kw_only=True, eq=False)
class RateLimitBucket:
    """
    Ratelimit state for a single bucket. Until the first response comes back the real limit is
    unknown, so a fresh bucket only lets a single request through.
    """

    #: The route that first created this bucket.
    route: Route = attr.ib()

    #: The total number of requests allowed per window.
    limit: int = attr.ib(default=1)

    #: The number of requests left in the current window. Never negative.
    remaining: int = attr.ib(default=1)

    #: The event loop time at which the current window resets.
    reset_at: float = attr.ib(default=0.0)

    #: The server-assigned hash for this bucket, once known.
    bucket_hash: str | None = attr.ib(default=None)

    #: The number of requests sent on this bucket that haven't come back yet.
    in_flight: int = attr.ib(default=0)

    _changed: anyio.Event = attr.ib(factory=anyio.Event, init=False, repr=False)

    def _notify(self) -> None:
        self._changed.set()
        self._changed = anyio.Event()

    def is_exhausted(self, now: float | None = None) -> bool:
        """
        Checks if sending a request right now would go over this bucket's limit.
        """

        if now is None:
            now = anyio.current_time()

        return self.remaining <= 0 and now < self.reset_at

    def try_reserve(self) -> bool:
        """
        Reserves a request slot on this bucket, if one is available.
        """

        now = anyio.current_time()
        if self.remaining <= 0 and self.in_flight == 0 and now >= self.reset_at:
            # the window expired and nothing outstanding can tell us otherwise, so refill.
            self.remaining = self.limit

        if self.remaining <= 0:
            return False

        self.remaining -= 1
        self.in_flight += 1
        return True

    async def acquire(self) -> None:
        """
        Waits until a request slot is available, then reserves it.
        """

        while not self.try_reserve():
            if self.in_flight > 0:
                # whatever is outstanding will tell us the real state when it comes back.
                await self._changed.wait()
            else:
                logger.info(
                    "Bucket exhausted, waiting for reset",
                    route=str(self.route),
                    reset=self.reset_at,
                )
                await anyio.sleep_until(self.reset_at)

    def release(self) -> None:
        """
        Releases a reserved slot after the request it was reserved for has come back (or failed).
        """

        self.in_flight = max(self.in_flight - 1, 0)
        self._notify()

    def refund(self) -> None:
        """
        Gives back a slot that was reserved for a request that ended up not being sent.
        """

        self.remaining = min(self.remaining + 1, self.limit)
        self.in_flight = max(self.in_flight - 1, 0)
        self._notify()

    def apply(self, info: RateLimitHeaders, now: float | None = None) -> None:
        """
        Overwrites this bucket's state with the information from a response. Applying the same
        information twice leaves the bucket exactly as applying it once.
        """

        if now is None:
            now = anyio.current_time()

        if info.limit is not None:
            self.limit = max(info.limit, 1)

        if info.remaining is not None:
            self.remaining = max(info.remaining, 0)

        if info.reset_after is not None:
            self.reset_at = now + info.reset_after

        if info.bucket_hash is not None:
            self.bucket_hash = info.bucket_hash

        self._notify()

    def exhaust(self, retry_after: float, now: float | None = None) -> None:
        """
        Marks this bucket as empty for ``retry_after`` seconds, after a 429.
        """

        if now is None:
            now = anyio.current_time()

        self.remaining = 0
        self.reset_at = max(self.reset_at, now + retry_after)
        self._notify()


@attr.s(slots=True, eq=False)
class GlobalLimitGate:
    """
    The process-wide "everything is ratelimited" flag. This is set by whichever handler sees a
    global 429, and clears itself when the time is up.
    """

    #: The event loop time at which the global ratelimit expires.
    retry_at: float = attr.ib(default=0.0)

    @property
    def limited(self) -> bool:
        """
        If the client is globally ratelimited right now.
        """

        return anyio.current_time() < self.retry_at

    def trip(self, retry_after: float) -> None:
        """
        Sets the global ratelimit for ``retry_after`` seconds. Never shortens an existing one.
        """

        self.retry_at = max(self.retry_at, anyio.current_time() + retry_after)
        logger.warning("Globally ratelimited", retry_after=retry_after)

    async def wait(self) -> None:
        """
        Waits until the global ratelimit (if any) has expired.
        """

        # run this repeatedly so that if the gate gets extended while we're asleep, we don't wake
        # up early.
        while self.retry_at > anyio.current_time():
            await anyio.sleep_until(self.retry_at)


class BucketTable:
    """
    Maps routes to their :class:`.RateLimitBucket`. Once Discord tells us a bucket hash, buckets
    are keyed by that hash, so several routes can end up sharing one bucket.
    """

    def __init__(self) -> None:
        self._by_route: dict[Route, RateLimitBucket] = {}
        self._by_hash: dict[str, RateLimitBucket] = {}

    def __len__(self) -> int:
        return len(self._by_route)

    def get_bucket(self, route: Route) -> RateLimitBucket:
        """
        Gets the bucket currently used for the provided route, creating it if needed.
        """

        bucket = self._by_route.get(route)
        if bucket is None:
            bucket = RateLimitBucket(route=route)
            self._by_route[route] = bucket

        return bucket

    def get_by_hash(self, bucket_hash: str) -> RateLimitBucket | None:
        """
        Gets the bucket known under the provided server-assigned hash, if any.
        """

        return self._by_hash.get(bucket_hash)

    def complete(self, route: Route, bucket: RateLimitBucket, info: RateLimitHeaders) -> None:
        """
        Releases the slot a request held on ``bucket`` and applies the response's ratelimit
        information, re-keying the route if the response names a different bucket hash.
        """

        bucket.release()

        if info.bucket_hash is None:
            bucket.apply(info)
            return

        known = self._by_hash.get(info.bucket_hash)
        if known is None:
            self._by_hash[info.bucket_hash] = bucket
            if bucket.bucket_hash is not None and bucket.bucket_hash != info.bucket_hash:
                logger.debug(
                    "Bucket hash changed",
                    route=str(route),
                    old=bucket.bucket_hash,
                    new=info.bucket_hash,
                )
                self._by_hash.pop(bucket.bucket_hash, None)

            bucket.apply(info)
            return

        if known is not bucket:
            logger.debug("Route shares a bucket", route=str(route), bucket_hash=info.bucket_hash)
            self._by_route[route] = known

        known.apply(info)
