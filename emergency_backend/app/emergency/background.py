"""
Background continuation runner.

Work that must not delay an HTTP response (reverse geocoding, diagnostic
merges) is submitted here. Each job runs as its own ``asyncio`` task on the
server's event loop; the runner keeps track of what is still in flight so
shutdown can drain it instead of abandoning half-written updates.

    runner.submit("enrich:abc", orchestrator.enrich_event(...))
    ...
    await runner.drain(timeout=10.0)   # on shutdown
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobRecord:
    task_id: str
    name: str
    status: JobStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    error: Optional[str] = None


class BackgroundTaskRunner:
    """
    Fire-and-track task runner.

    Failures are logged, never re-raised: a background job can't fail the
    request that spawned it.
    """

    def __init__(self, history_size: int = 200):
        self._running: Dict[str, asyncio.Task] = {}
        self._history: Deque[JobRecord] = deque(maxlen=history_size)

    @property
    def pending(self) -> int:
        return len(self._running)

    def jobs(self, status: Optional[JobStatus] = None) -> List[JobRecord]:
        records = list(self._history)
        if status:
            records = [r for r in records if r.status == status]
        return records

    def submit(self, name: str, work: Awaitable[Any]) -> str:
        """Schedule ``work`` on the running loop; returns a task id."""
        task_id = uuid.uuid4().hex[:8]
        record = JobRecord(
            task_id=task_id,
            name=name,
            status=JobStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
        )
        self._history.append(record)

        async def run_job():
            try:
                await work
                record.status = JobStatus.COMPLETED
            except asyncio.CancelledError:
                record.status = JobStatus.CANCELLED
                logger.warning("Background job %s (%s) cancelled", name, task_id)
                raise
            except Exception as e:
                logger.exception("Background job %s (%s) failed", name, task_id)
                record.status = JobStatus.FAILED
                record.error = str(e)
            finally:
                record.completed_at = datetime.now(timezone.utc)

        def on_done(task: asyncio.Task) -> None:
            # A task cancelled before its first step never enters run_job
            self._running.pop(task_id, None)
            if record.status == JobStatus.RUNNING:
                record.status = JobStatus.CANCELLED
                record.completed_at = datetime.now(timezone.utc)

        task = asyncio.create_task(run_job(), name=f"bg:{name}")
        self._running[task_id] = task
        task.add_done_callback(on_done)
        return task_id

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight jobs. True if all finished within ``timeout``."""
        tasks = list(self._running.values())
        if not tasks:
            return True
        logger.info("Draining %d background job(s)", len(tasks))
        done, still_running = await asyncio.wait(tasks, timeout=timeout)
        if still_running:
            logger.warning(
                "%d background job(s) still running after %.1fs drain",
                len(still_running), timeout or 0.0,
            )
            return False
        return True

    async def cancel_all(self) -> int:
        tasks = list(self._running.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    async def shutdown(self, timeout: float) -> None:
        """Drain, then cancel whatever is left."""
        if not await self.drain(timeout):
            cancelled = await self.cancel_all()
            logger.warning("Cancelled %d background job(s) at shutdown", cancelled)
