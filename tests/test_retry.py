"""Tests for the bounded retry policy."""

from __future__ import annotations

import asyncio

import pytest

from waveplus_receiver.errors import (
    Cancelled,
    ReceiveExhausted,
    RetriesExhausted,
)
from waveplus_receiver.retry import Outcome, RetryPolicy, default_classifier


def flaky(failures, result="ok", error=None):
    calls = []

    async def operation():
        calls.append(len(calls) + 1)
        if len(calls) <= failures:
            raise error or asyncio.TimeoutError("radio timeout")
        return result

    return operation, calls


def test_default_classifier():
    assert default_classifier(Cancelled("stop")) is Outcome.CANCELLED
    assert default_classifier(asyncio.TimeoutError()) is Outcome.RETRY
    assert default_classifier(ValueError("garbled")) is Outcome.RETRY


def test_attempts_must_be_positive():
    with pytest.raises(ValueError):
        RetryPolicy(0)


@pytest.mark.asyncio
async def test_succeeds_first_time():
    operation, calls = flaky(0)
    assert await RetryPolicy(3).run(operation, description="op") == "ok"
    assert calls == [1]


@pytest.mark.asyncio
@pytest.mark.parametrize("k", [1, 2, 3])
async def test_succeeds_on_kth_attempt(k):
    operation, calls = flaky(k - 1)
    assert await RetryPolicy(3).run(operation, description="op") == "ok"
    assert len(calls) == k


@pytest.mark.asyncio
async def test_exhaustion_chains_last_error():
    last = RuntimeError("third failure")
    errors = [RuntimeError("first"), RuntimeError("second"), last]

    async def operation():
        raise errors.pop(0)

    with pytest.raises(ReceiveExhausted) as excinfo:
        await RetryPolicy(3).run(
            operation, description="read", exhausted=ReceiveExhausted
        )

    assert excinfo.value.__cause__ is last
    assert excinfo.value.attempts == 3
    assert isinstance(excinfo.value, RetriesExhausted)


@pytest.mark.asyncio
async def test_cancelled_is_not_retried():
    operation, calls = flaky(5, error=Cancelled("shutdown"))

    with pytest.raises(Cancelled):
        await RetryPolicy(3).run(operation, description="op")
    assert calls == [1]


@pytest.mark.asyncio
async def test_fatal_is_not_retried():
    operation, calls = flaky(5, error=PermissionError("no adapter access"))

    def classify(exc):
        if isinstance(exc, PermissionError):
            return Outcome.FATAL
        return Outcome.RETRY

    with pytest.raises(PermissionError):
        await RetryPolicy(3, classify=classify).run(operation, description="op")
    assert calls == [1]


@pytest.mark.asyncio
async def test_delay_between_attempts_only():
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    operation, _ = flaky(5)
    with pytest.raises(RetriesExhausted):
        await RetryPolicy(3, delay=0.5, sleep=fake_sleep).run(
            operation, description="op"
        )
    assert slept == [0.5, 0.5]


@pytest.mark.asyncio
async def test_task_cancellation_propagates():
    started = asyncio.Event()

    async def operation():
        started.set()
        await asyncio.sleep(10)

    task = asyncio.create_task(RetryPolicy(3).run(operation, description="op"))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
