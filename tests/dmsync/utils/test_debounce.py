"""Tests for Debouncer."""

import asyncio

import pytest

from dmsync.utils.debounce import Debouncer


@pytest.mark.asyncio
async def test_only_last_call_fires():
    calls = []
    debouncer = Debouncer(calls.append, 0.02)

    debouncer.call("a")
    debouncer.call("b")
    debouncer.call("c")
    assert debouncer.pending
    await asyncio.sleep(0.05)

    assert calls == ["c"]
    assert not debouncer.pending


@pytest.mark.asyncio
async def test_each_call_restarts_the_timer():
    calls = []
    debouncer = Debouncer(calls.append, 0.03)

    for value in range(4):
        debouncer.call(value)
        await asyncio.sleep(0.01)
    assert calls == []

    await asyncio.sleep(0.05)
    assert calls == [3]


@pytest.mark.asyncio
async def test_flush_runs_pending_call_now():
    calls = []
    debouncer = Debouncer(lambda *a, **kw: calls.append((a, kw)), 10)

    debouncer.call(1, key="x")
    debouncer.flush()
    debouncer.flush()

    assert calls == [((1,), {"key": "x"})]
    assert not debouncer.pending


@pytest.mark.asyncio
async def test_cancel_drops_pending_call():
    calls = []
    debouncer = Debouncer(calls.append, 0.01)

    debouncer.call("dropped")
    debouncer.cancel()
    await asyncio.sleep(0.03)

    assert calls == []


@pytest.mark.asyncio
async def test_failing_callback_is_logged(caplog):
    def broken(value):
        raise RuntimeError("boom")

    debouncer = Debouncer(broken, 0)
    debouncer.call("x")
    await asyncio.sleep(0.01)

    assert "Debounced call failed" in caplog.text


@pytest.mark.asyncio
async def test_dispose_rejects_later_calls():
    debouncer = Debouncer(lambda: None, 0.01)
    debouncer.dispose()
    with pytest.raises(RuntimeError):
        debouncer.call()
