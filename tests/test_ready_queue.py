import asyncio

import pytest

from jobdispatch.models import Job
from jobdispatch.ready_queue import ReadyQueue


def make_job(name):
    return Job(lambda: None, name=name)


@pytest.mark.asyncio
async def test_fifo_order():
    queue = ReadyQueue()
    jobs = [make_job(str(i)) for i in range(5)]
    for job in jobs:
        queue.put(job)
    assert len(queue) == 5
    assert [await queue.get() for _ in range(5)] == jobs
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_discarded_jobs_are_skipped():
    queue = ReadyQueue()
    a, b, c = make_job("a"), make_job("b"), make_job("c")
    for job in (a, b, c):
        queue.put(job)

    assert queue.discard(b.id)
    assert not queue.discard(b.id)
    assert len(queue) == 2
    assert await queue.get() is a
    assert await queue.get() is c
    assert queue.get_nowait() is None


@pytest.mark.asyncio
async def test_get_waits_for_put():
    queue = ReadyQueue()
    getter = asyncio.create_task(queue.get())
    await asyncio.sleep(0.01)
    assert not getter.done()

    job = make_job("late")
    queue.put(job)
    assert await asyncio.wait_for(getter, 1) is job


@pytest.mark.asyncio
async def test_double_put_rejected():
    queue = ReadyQueue()
    job = make_job("x")
    queue.put(job)
    with pytest.raises(ValueError):
        queue.put(job)
