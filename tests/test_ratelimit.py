from email.utils import formatdate

import anyio
import httpx
import pytest
from kotone.http.ratelimit import BucketTable, GlobalLimitGate, RateLimitBucket, RateLimitHeaders
from kotone.http.route import Route

ROUTE = Route("POST", "/channels/123456789012345678/messages")
OTHER_ROUTE = Route("POST", "/channels/876543210987654321/messages")


def test_headers_are_parsed():
    response = httpx.Response(
        200,
        headers={
            "X-RateLimit-Limit": "5",
            "X-RateLimit-Remaining": "3",
            "X-RateLimit-Reset-After": "1.5",
            "X-RateLimit-Bucket": "abcdef",
        },
    )
    info = RateLimitHeaders.from_response(response)

    assert info.limit == 5
    assert info.remaining == 3
    assert info.reset_after == 1.5
    assert info.bucket_hash == "abcdef"
    assert info.retry_after is None
    assert not info.is_global


def test_missing_headers_are_none():
    info = RateLimitHeaders.from_response(httpx.Response(204))

    assert info == RateLimitHeaders()


def test_retry_after_units():
    response = httpx.Response(429, json={"retry_after": 1500, "global": True})

    millis = RateLimitHeaders.from_response(response)
    assert millis.retry_after == 1.5
    assert millis.is_global

    seconds = RateLimitHeaders.from_response(response, retry_after_in_milliseconds=False)
    assert seconds.retry_after == 1500


def test_retry_after_falls_back_to_header():
    response = httpx.Response(
        429, headers={"Retry-After": "250", "X-RateLimit-Global": "true"}, content=b"<html>"
    )
    info = RateLimitHeaders.from_response(response)

    assert info.retry_after == 0.25
    assert info.is_global


def test_absolute_reset_uses_server_clock():
    response = httpx.Response(
        200,
        headers={
            "X-RateLimit-Reset": "1700000010.5",
            "Date": formatdate(1700000000, usegmt=True),
        },
    )
    info = RateLimitHeaders.from_response(response, now=0.0)

    assert info.reset_after == pytest.approx(10.5)


def test_absolute_reset_in_the_past_is_clamped():
    response = httpx.Response(200, headers={"X-RateLimit-Reset": "100"})
    info = RateLimitHeaders.from_response(response, now=200.0)

    assert info.reset_after == 0.0


@pytest.mark.anyio
async def test_fresh_bucket_allows_one_request():
    bucket = RateLimitBucket(route=ROUTE)

    assert bucket.try_reserve()
    assert not bucket.try_reserve()
    assert bucket.remaining == 0
    assert bucket.in_flight == 1


@pytest.mark.anyio
async def test_apply_overwrites_and_is_idempotent():
    info = RateLimitHeaders(limit=10, remaining=4, reset_after=2.0, bucket_hash="abc")

    once = RateLimitBucket(route=ROUTE)
    once.apply(info, now=100.0)

    twice = RateLimitBucket(route=ROUTE)
    twice.apply(info, now=100.0)
    twice.apply(info, now=100.0)

    for bucket in (once, twice):
        assert bucket.limit == 10
        assert bucket.remaining == 4
        assert bucket.reset_at == 102.0
        assert bucket.bucket_hash == "abc"


@pytest.mark.anyio
async def test_apply_never_goes_negative():
    bucket = RateLimitBucket(route=ROUTE)
    bucket.apply(RateLimitHeaders(limit=0, remaining=-3), now=0.0)

    assert bucket.limit == 1
    assert bucket.remaining == 0


@pytest.mark.anyio
async def test_exhausted_bucket_refills_after_reset():
    bucket = RateLimitBucket(route=ROUTE, limit=2, remaining=2)
    bucket.exhaust(0.05)

    assert bucket.is_exhausted()

    start = anyio.current_time()
    with anyio.fail_after(1):
        await bucket.acquire()

    assert anyio.current_time() - start >= 0.04
    assert bucket.remaining == 1
    assert bucket.in_flight == 1


@pytest.mark.anyio
async def test_refund_returns_the_slot():
    bucket = RateLimitBucket(route=ROUTE, limit=3, remaining=3)

    assert bucket.try_reserve()
    bucket.refund()

    assert bucket.remaining == 3
    assert bucket.in_flight == 0


@pytest.mark.anyio
async def test_routes_with_the_same_hash_share_a_bucket():
    table = BucketTable()
    info = RateLimitHeaders(limit=5, remaining=4, reset_after=1.0, bucket_hash="shared")

    first = table.get_bucket(ROUTE)
    assert first.try_reserve()
    table.complete(ROUTE, first, info)

    second = table.get_bucket(OTHER_ROUTE)
    assert second is not first
    assert second.try_reserve()
    table.complete(OTHER_ROUTE, second, info)

    assert table.get_bucket(OTHER_ROUTE) is first
    assert table.get_by_hash("shared") is first
    assert len(table) == 2


@pytest.mark.anyio
async def test_global_gate_blocks_until_expiry():
    gate = GlobalLimitGate()
    assert not gate.limited

    gate.trip(0.05)
    assert gate.limited

    start = anyio.current_time()
    with anyio.fail_after(1):
        await gate.wait()

    assert anyio.current_time() - start >= 0.04
    assert not gate.limited


@pytest.mark.anyio
async def test_global_gate_is_never_shortened():
    gate = GlobalLimitGate()
    gate.trip(10)
    retry_at = gate.retry_at

    gate.trip(1)
    assert gate.retry_at == retry_at


@pytest.mark.anyio
async def test_apply_replaces_previous_state():
    bucket = RateLimitBucket(route=ROUTE)
    bucket.apply(RateLimitHeaders(limit=10, remaining=9, reset_after=5.0), now=0.0)
    bucket.apply(RateLimitHeaders(limit=5, remaining=2, reset_after=1.0), now=1.0)

    assert (bucket.limit, bucket.remaining, bucket.reset_at) == (5, 2, 2.0)
