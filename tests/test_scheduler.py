"""Tests for TransferScheduler."""

import asyncio

import pytest

from uploader.scheduler import TransferScheduler
from uploader.types import TransferQueueEntry, UploadSource


def _entry(name, results, errors=None):
    errors = errors if errors is not None else results
    return TransferQueueEntry(
        source=UploadSource.from_bytes(name, name.encode(), 1),
        on_success=lambda value: results.append(('ok', name, value)),
        on_error=lambda error: errors.append(('error', name, str(error))),
    )


def test_max_concurrent_must_be_positive():
    with pytest.raises(ValueError):
        TransferScheduler(lambda entry: None, max_concurrent=0)


@pytest.mark.asyncio
async def test_never_exceeds_limit_and_runs_fifo():
    started = []
    active = 0
    peak = 0

    async def runner(entry):
        nonlocal active, peak
        started.append(entry.source.filename)
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return entry.source.filename

    scheduler = TransferScheduler(runner, max_concurrent=3)
    results = []
    for n in range(8):
        scheduler.enqueue(_entry(f'f{n}', results))

    assert scheduler.active_count == 3
    assert scheduler.pending_count == 5

    await scheduler.wait_idle()

    assert peak == 3
    assert started == [f'f{n}' for n in range(8)]
    assert sorted(name for _, name, _ in results) == sorted(f'f{n}' for n in range(8))
    assert scheduler.active_count == 0
    assert scheduler.pending_count == 0


@pytest.mark.asyncio
async def test_error_releases_slot_and_fires_once():
    async def runner(entry):
        if entry.source.filename == 'bad':
            raise RuntimeError('boom')
        return 'done'

    scheduler = TransferScheduler(runner, max_concurrent=1)
    results = []
    scheduler.enqueue(_entry('bad', results))
    scheduler.enqueue(_entry('good', results))
    await scheduler.wait_idle()

    assert results == [('error', 'bad', 'boom'), ('ok', 'good', 'done')]


@pytest.mark.asyncio
async def test_raising_callback_still_releases_slot():
    async def runner(entry):
        return 'done'

    def explode(_):
        raise ValueError('callback failure')

    scheduler = TransferScheduler(runner, max_concurrent=1)
    results = []
    first = TransferQueueEntry(source=UploadSource.from_bytes('a', b'a', 1), on_success=explode)
    scheduler.enqueue(first)
    scheduler.enqueue(_entry('b', results))
    await scheduler.wait_idle()

    assert results == [('ok', 'b', 'done')]


@pytest.mark.asyncio
async def test_removed_entry_never_runs():
    ran = []
    gate = asyncio.Event()

    async def runner(entry):
        ran.append(entry.source.filename)
        await gate.wait()

    scheduler = TransferScheduler(runner, max_concurrent=1)
    results = []
    running = _entry('running', results)
    waiting = _entry('waiting', results)
    scheduler.enqueue(running)
    scheduler.enqueue(waiting)

    assert scheduler.remove(waiting) is True
    assert scheduler.remove(running) is False

    gate.set()
    await scheduler.wait_idle()

    assert ran == ['running']
    assert [name for _, name, _ in results] == ['running']


@pytest.mark.asyncio
async def test_wait_idle_returns_immediately_when_empty():
    scheduler = TransferScheduler(lambda entry: None)
    await asyncio.wait_for(scheduler.wait_idle(), timeout=1)
