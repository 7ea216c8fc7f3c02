"""Operation status registry and background job runner.

OperationRegistry is the process-wide table pollers read. It is owned by the
app (created in create_app, handed to whoever needs it) and lives exactly as
long as the process: a restart forgets every operation, and a poll for a
forgotten id is answered as not-found.

Lifecycle of an entry:

    queued ──> processing ──> completed
                   │  ↺
                   └────────> failed

`processing` may be re-entered to report progress. `completed` and `failed`
are terminal; later writes are logged and dropped. Every write replaces the
stored Operation under a lock, and readers get a copy, so a poller never
observes a half-applied update.

JobRunner is the submit/poll surface on top of the registry: `submit`
registers an operation, schedules the job as an asyncio task and returns the
id straight away; the task owns the entry's only writer lineage.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from obscura.errors import ObscuraError, UnknownOperationError
from obscura.models import Operation

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OperationRegistry:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._ops: dict[str, Operation] = {}
        self._lock = threading.Lock()

    def register(self, kind: str, message: str = "Queued") -> str:
        """Create a queued entry and return its fresh id."""
        op_id = f"{kind}_{uuid.uuid4().hex}"
        op = Operation(id=op_id, kind=kind, status_message=message, started_at=self._clock())
        with self._lock:
            self._ops[op_id] = op
        logger.info("Operation registered: %s", op_id)
        return op_id

    def mark_processing(
        self, op_id: str, progress_percent: int | None = None, message: str | None = None
    ) -> bool:
        with self._lock:
            op = self._ops.get(op_id)
            if op is None:
                logger.warning("Progress update for unknown operation %s", op_id)
                return False
            if op.is_terminal:
                logger.warning("Progress update for %s operation %s ignored", op.status, op_id)
                return False
            update: dict[str, Any] = {"status": "processing"}
            if progress_percent is not None:
                update["progress_percent"] = max(op.progress_percent, min(100, progress_percent))
            if message is not None:
                update["status_message"] = message
            self._ops[op_id] = op.model_copy(update=update)
            return True

    def mark_completed(self, op_id: str, result: Any) -> bool:
        return self._finish(op_id, {
            "status": "completed",
            "progress_percent": 100,
            "status_message": "Completed",
            "result": result,
        })

    def mark_failed(self, op_id: str, error: str) -> bool:
        return self._finish(op_id, {
            "status": "failed",
            "status_message": "Failed",
            "error": error,
        })

    def _finish(self, op_id: str, update: dict[str, Any]) -> bool:
        with self._lock:
            op = self._ops.get(op_id)
            if op is None:
                logger.warning("Terminal update for unknown operation %s", op_id)
                return False
            if op.status != "processing":
                # terminal states are never overwritten; queued must pass processing first
                logger.warning(
                    "Operation %s is %s, refusing transition to %s",
                    op_id, op.status, update["status"],
                )
                return False
            update["completed_at"] = self._clock()
            self._ops[op_id] = op.model_copy(update=update)
        logger.info("Operation %s %s", op_id, update["status"])
        return True

    def get(self, op_id: str) -> Operation | None:
        with self._lock:
            op = self._ops.get(op_id)
            return op.model_copy(deep=True) if op is not None else None

    def list_ids(self) -> list[str]:
        """Known operation ids (diagnostics only)."""
        with self._lock:
            return list(self._ops)

    def evict_older_than(self, max_age: timedelta) -> int:
        """Forget operations that finished before now - max_age. Returns how many.

        Queued and processing entries are kept however old they are.
        """
        cutoff = self._clock() - max_age
        with self._lock:
            stale = [
                op_id for op_id, op in self._ops.items()
                if op.is_terminal and op.completed_at is not None and op.completed_at < cutoff
            ]
            for op_id in stale:
                del self._ops[op_id]
        if stale:
            logger.info("Evicted %d operations older than %s", len(stale), max_age)
        return len(stale)


# ---------------------------------------------------------------------------
# Job runner
# ---------------------------------------------------------------------------

class ProgressReporter:
    """Handed to a running job so it can report progress on its own entry."""

    def __init__(self, registry: OperationRegistry, op_id: str) -> None:
        self._registry = registry
        self.operation_id = op_id

    def __call__(self, percent: int, message: str) -> None:
        self._registry.mark_processing(self.operation_id, percent, message)


Job = Callable[[ProgressReporter], Awaitable[Any]]


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, ObscuraError):
        return exc.message
    return f"{type(exc).__name__}: {exc}"


class JobRunner:
    def __init__(self, registry: OperationRegistry, max_age: timedelta | None = None) -> None:
        self.registry = registry
        self._max_age = max_age
        self._tasks: dict[str, asyncio.Task] = {}

    def submit(self, kind: str, job: Job) -> str:
        """Register an operation and start `job` in the background. Returns its id."""
        if self._max_age is not None:
            self.registry.evict_older_than(self._max_age)
        op_id = self.registry.register(kind)
        task = asyncio.create_task(self._run(op_id, job), name=op_id)
        self._tasks[op_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(op_id, None))
        return op_id

    async def _run(self, op_id: str, job: Job) -> None:
        self.registry.mark_processing(op_id, 1, "Started")
        try:
            result = await job(ProgressReporter(self.registry, op_id))
        except asyncio.CancelledError:
            self.registry.mark_failed(op_id, "Cancelled")
            raise
        except Exception as e:
            logger.exception("Operation %s failed", op_id)
            self.registry.mark_failed(op_id, describe_error(e))
            return
        self.registry.mark_completed(op_id, result)

    def poll(self, op_id: str) -> Operation:
        op = self.registry.get(op_id)
        if op is None:
            raise UnknownOperationError(op_id)
        return op

    async def wait(self, op_id: str) -> Operation:
        """Wait for a running job to finish, then return its final state."""
        task = self._tasks.get(op_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.poll(op_id)

    async def drain(self) -> None:
        """Let every in-flight job run to completion (used at shutdown)."""
        tasks = list(self._tasks.values())
        if tasks:
            logger.info("Waiting for %d background jobs", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)
