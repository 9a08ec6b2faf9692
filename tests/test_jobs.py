"""Tests for indexing job registry."""

import asyncio

import pytest

from chat_memory.errors import Cancelled
from chat_memory.jobs import IndexingJob, JobRegistry, JobState


def test_replace_cancels_previous():
    registry = JobRegistry()
    first = registry.replace("acc")
    second = registry.replace("acc")

    assert first.cancelled is True
    assert second.cancelled is False
    assert registry.get("acc") is second


def test_release_keeps_newer_job():
    registry = JobRegistry()
    first = registry.replace("acc")
    second = registry.replace("acc")

    registry.release("acc", first)
    assert registry.get("acc") is second

    registry.release("acc", second)
    assert registry.is_active("acc") is False


def test_cancel():
    registry = JobRegistry()
    assert registry.cancel("acc") is False

    job = registry.replace("acc")
    assert registry.cancel("acc") is True
    assert job.cancelled is True
    assert registry.is_active("acc") is False


def test_accounts_are_independent():
    registry = JobRegistry()
    a = registry.replace("a")
    registry.replace("b")

    assert a.cancelled is False
    assert registry.is_active("a") and registry.is_active("b")


def test_raise_if_cancelled():
    job = IndexingJob("acc")
    job.raise_if_cancelled()

    job.cancel()
    with pytest.raises(Cancelled):
        job.raise_if_cancelled()


@pytest.mark.asyncio
async def test_wait_returns_terminal_state():
    job = IndexingJob("acc")
    waiter = asyncio.create_task(job.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    job.finish(JobState.COMPLETED)

    assert await waiter == JobState.COMPLETED
    assert job.finished is True
