"""Indexing job handles and the per-account job registry."""

import asyncio
import logging
from enum import Enum
from typing import Dict, Optional

from .errors import Cancelled

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class IndexingJob:
    """Cancellation token, state and completion signal for one indexing run."""

    def __init__(self, account_id: str):
        self.account_id = account_id
        self.state = JobState.IDLE
        self.error: Optional[BaseException] = None
        self._cancel_event = asyncio.Event()
        self._finished = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def cancel(self) -> None:
        self._cancel_event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled(f"Indexing for account {self.account_id} was cancelled")

    def finish(self, state: JobState, error: Optional[BaseException] = None) -> None:
        self.state = state
        self.error = error
        self._finished.set()

    async def wait(self) -> JobState:
        """Wait until the job reaches a terminal state."""
        await self._finished.wait()
        return self.state


class JobRegistry:
    """At most one active job per account.

    ``replace`` and ``cancel`` never await, so on the event loop they run
    without interleaving with other coroutines.
    """

    def __init__(self):
        self._jobs: Dict[str, IndexingJob] = {}

    def get(self, account_id: str) -> Optional[IndexingJob]:
        return self._jobs.get(account_id)

    def replace(self, account_id: str) -> IndexingJob:
        """Cancel the account's current job, if any, and register a new one."""
        previous = self._jobs.get(account_id)
        if previous is not None:
            logger.info(f"Cancelling running indexing job for account {account_id}")
            previous.cancel()

        job = IndexingJob(account_id)
        self._jobs[account_id] = job
        return job

    def release(self, account_id: str, job: IndexingJob) -> None:
        """Deregister ``job`` unless a newer job has already taken its place."""
        if self._jobs.get(account_id) is job:
            del self._jobs[account_id]

    def cancel(self, account_id: str) -> bool:
        job = self._jobs.pop(account_id, None)
        if job is None:
            return False
        job.cancel()
        return True

    def is_active(self, account_id: str) -> bool:
        return account_id in self._jobs
