import asyncio

import pytest

from pybackupgw.scheduler import Scheduler


@pytest.mark.asyncio
async def test_call_later_runs_once():
    scheduler = Scheduler()
    calls = []

    async def callback():
        calls.append(1)

    call = scheduler.call_later(0.01, callback)
    await asyncio.sleep(0.05)
    assert calls == [1]
    assert call.fired
    assert call.cancel() is False
    assert scheduler.pending == 0


@pytest.mark.asyncio
async def test_cancel_before_firing():
    scheduler = Scheduler()
    calls = []

    async def callback():
        calls.append(1)

    call = scheduler.call_later(0.05, callback)
    assert call.cancel() is True
    assert call.cancel() is False
    await asyncio.sleep(0.1)
    assert calls == []


@pytest.mark.asyncio
async def test_failing_callback_is_logged(caplog):
    scheduler = Scheduler()

    async def broken():
        raise RuntimeError("boom")

    scheduler.call_later(0, broken, name="broken")
    await asyncio.sleep(0.02)
    assert "Scheduled call broken failed" in caplog.text


@pytest.mark.asyncio
async def test_shutdown_cancels_pending():
    scheduler = Scheduler()
    calls = []

    async def callback():
        calls.append(1)

    scheduler.call_later(0.05, callback)
    await scheduler.shutdown()
    await asyncio.sleep(0.1)
    assert calls == []
    assert scheduler.pending == 0
