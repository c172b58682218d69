from datetime import datetime, timezone

import pytest

from ordersync.services.toast.pacer import Pacer, parse_retry_after


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_pacer(clock: FakeClock, sleeps: list):
    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)
        clock.now += seconds

    return Pacer(sleep=sleep, clock=clock, rng=lambda: 0.0)


def test_parse_retry_after_seconds():
    assert parse_retry_after("3") == 3.0
    assert parse_retry_after("1.5") == 1.5
    assert parse_retry_after("-4") == 0.0


def test_parse_retry_after_http_date():
    now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert parse_retry_after("Wed, 01 May 2024 12:00:10 GMT", now=now) == 10.0
    assert parse_retry_after("Wed, 01 May 2024 11:00:00 GMT", now=now) == 0.0


def test_parse_retry_after_garbage():
    assert parse_retry_after(None) is None
    assert parse_retry_after("") is None
    assert parse_retry_after("soon") is None


def test_parse_retry_after_rejects_non_finite_values():
    assert parse_retry_after("inf") is None
    assert parse_retry_after("-inf") is None
    assert parse_retry_after("nan") is None


@pytest.mark.asyncio
async def test_first_call_does_not_wait():
    clock, sleeps = FakeClock(), []
    pacer = make_pacer(clock, sleeps)

    slept = await pacer.pace("orders", 600)

    assert slept == 0
    assert sleeps == []
    assert pacer.last_call("orders") == 100.0


@pytest.mark.asyncio
async def test_waits_out_remaining_gap_within_scope():
    clock, sleeps = FakeClock(), []
    pacer = make_pacer(clock, sleeps)

    await pacer.pace("orders", 600)
    clock.now += 0.2
    await pacer.pace("orders", 600)

    assert sleeps == [pytest.approx(0.4)]


@pytest.mark.asyncio
async def test_scopes_are_independent():
    clock, sleeps = FakeClock(), []
    pacer = make_pacer(clock, sleeps)

    await pacer.pace("orders", 600)
    await pacer.pace("menu", 1000)

    assert sleeps == []


@pytest.mark.asyncio
async def test_retry_after_overrides_gap():
    clock, sleeps = FakeClock(), []
    pacer = make_pacer(clock, sleeps)

    await pacer.pace("orders", 600, retry_after="2")

    assert sleeps == [pytest.approx(2.0)]


@pytest.mark.asyncio
async def test_retry_after_wait_is_capped():
    clock, sleeps = FakeClock(), []
    pacer = make_pacer(clock, sleeps)

    await pacer.pace("orders", 600, retry_after="3600", max_wait_ms=2000)
    await pacer.pace("orders", 600, retry_after="inf")

    assert sleeps[0] == pytest.approx(2.0)
    assert sleeps[1] == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_jitter_is_added():
    clock, sleeps = FakeClock(), []

    async def sleep(seconds: float) -> None:
        sleeps.append(seconds)

    pacer = Pacer(sleep=sleep, clock=clock, rng=lambda: 0.5)
    await pacer.pace("global", 0)

    assert sleeps == [pytest.approx(0.03)]
