"""
Background task queue.
Named handlers run on an asyncio worker pool with bounded retries.
Tasks that exhaust their attempts are kept on a dead-letter list and
handed to the dead-letter hooks registered for their name, so a failure
is always visible somewhere other than a log line.
"""

import asyncio
import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import structlog
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from config import settings
from utils.metrics import track_task

logger = structlog.get_logger(__name__)

TaskHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class Task:
    """A unit of background work."""

    task_id: str
    name: str
    payload: dict[str, Any]
    attempts: int = 0
    last_error: Optional[str] = None
    submitted_at: datetime = field(default_factory=datetime.utcnow)
    dead_lettered_at: Optional[datetime] = None


DeadLetterHook = Callable[[Task], Awaitable[None]]


class TaskQueue:
    """In-process work queue with idempotent submit, retries and dead letters."""

    def __init__(
        self,
        workers: int = 2,
        max_attempts: int = 3,
        retry_base_seconds: float = 2.0,
        retry_max_seconds: float = 30.0,
        completed_id_limit: int = 10_000,
        dead_letter_limit: int = 1_000,
    ) -> None:
        self.workers = workers
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self.completed_id_limit = completed_id_limit

        self._handlers: dict[str, TaskHandler] = {}
        self._dead_letter_hooks: dict[str, list[DeadLetterHook]] = {}
        self._pending: deque[Task] = deque()
        # Ids of tasks queued or running, released when the task finishes
        self._active_ids: set[str] = set()
        # Most recent successful ids, oldest first
        self._completed_ids: OrderedDict[str, None] = OrderedDict()
        self._dead_letters: deque[Task] = deque(maxlen=dead_letter_limit)
        self._worker_tasks: list[asyncio.Task] = []
        self._wakeup: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, name: str, handler: TaskHandler) -> None:
        """Register the handler for a task name."""
        self._handlers[name] = handler

    def on_dead_letter(self, name: str, hook: DeadLetterHook) -> None:
        """Register a hook called when a task of this name is dead-lettered."""
        hooks = self._dead_letter_hooks.setdefault(name, [])
        if hook not in hooks:
            hooks.append(hook)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, name: str, payload: dict[str, Any], task_id: Optional[str] = None) -> bool:
        """
        Queue a task for execution.

        Idempotent by task_id: an id that is queued, running or among the
        most recent successes is a no-op. A dead-lettered id can be
        submitted again.

        Args:
            name: Registered task name
            payload: Task data (no secrets)
            task_id: Optional idempotency key (generated if omitted)

        Returns:
            True if queued, False for a duplicate task_id
        """
        task_id = task_id or f"{name}:{uuid.uuid4()}"
        if task_id in self._active_ids or task_id in self._completed_ids:
            logger.info("task_duplicate_ignored", task=name, task_id=task_id)
            return False

        self._active_ids.add(task_id)
        self._pending.append(Task(task_id=task_id, name=name, payload=payload))
        track_task(name, "submitted")
        logger.info("task_submitted", task=name, task_id=task_id, pending=len(self._pending))

        if self._wakeup is not None:
            self._wakeup.set()
        return True

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> list[Task]:
        return list(self._pending)

    @property
    def dead_letters(self) -> list[Task]:
        return list(self._dead_letters)

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._worker_tasks)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _log_retry(self, task: Task) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            track_task(task.name, "retried")
            logger.warning(
                "task_retry_scheduled",
                task=task.name,
                task_id=task.task_id,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_attempts,
                error=str(error),
            )

        return before_sleep

    async def execute(self, task: Task) -> bool:
        """
        Run a task with retries.

        Returns:
            True if the handler succeeded, False if the task was dead-lettered
        """
        handler = self._handlers.get(task.name)
        if handler is None:
            task.last_error = f"no handler registered for {task.name}"
            await self._dead_letter(task)
            return False

        start_time = time.time()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.retry_base_seconds, max=self.retry_max_seconds),
                before_sleep=self._log_retry(task),
                reraise=True,
            ):
                with attempt:
                    task.attempts = attempt.retry_state.attempt_number
                    await handler(task.payload)

        except asyncio.CancelledError:
            raise
        except Exception as e:
            task.last_error = f"{type(e).__name__}: {e}"
            await self._dead_letter(task)
            return False

        self._remember_completed(task.task_id)
        track_task(task.name, "succeeded", time.time() - start_time)
        logger.info(
            "task_succeeded",
            task=task.name,
            task_id=task.task_id,
            attempts=task.attempts,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return True

    def _remember_completed(self, task_id: str) -> None:
        self._active_ids.discard(task_id)
        self._completed_ids[task_id] = None
        self._completed_ids.move_to_end(task_id)
        while len(self._completed_ids) > self.completed_id_limit:
            self._completed_ids.popitem(last=False)

    async def _dead_letter(self, task: Task) -> None:
        task.dead_lettered_at = datetime.utcnow()
        self._active_ids.discard(task.task_id)
        self._dead_letters.append(task)
        track_task(task.name, "dead_lettered")
        logger.error(
            "task_dead_lettered",
            task=task.name,
            task_id=task.task_id,
            attempts=task.attempts,
            error=task.last_error,
        )

        for hook in self._dead_letter_hooks.get(task.name, []):
            try:
                await hook(task)
            except Exception as e:
                logger.error("dead_letter_hook_error", task=task.name, task_id=task.task_id, error=str(e))

    async def drain(self) -> int:
        """Execute every pending task in the current coroutine. Returns the count run."""
        processed = 0
        while self._pending:
            task = self._pending.popleft()
            await self.execute(task)
            processed += 1
        return processed

    async def _worker(self, index: int) -> None:
        logger.debug("task_worker_started", worker=index)
        while True:
            if not self._pending:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            task = self._pending.popleft()
            try:
                await self.execute(task)
            except asyncio.CancelledError:
                # Put the task back so a later drain can pick it up
                self._pending.appendleft(task)
                raise

    async def start(self) -> None:
        """Start the worker pool on the running event loop."""
        if self.is_running:
            return

        self._wakeup = asyncio.Event()
        if self._pending:
            self._wakeup.set()

        self._worker_tasks = [asyncio.create_task(self._worker(i)) for i in range(self.workers)]
        logger.info("task_queue_started", workers=self.workers, max_attempts=self.max_attempts)

    async def stop(self) -> None:
        """Cancel the worker pool. Unfinished tasks stay pending."""
        for worker in self._worker_tasks:
            worker.cancel()
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks = []
        self._wakeup = None
        logger.info("task_queue_stopped", pending=len(self._pending), dead_letters=len(self._dead_letters))

    def reset(self) -> None:
        """Forget pending, seen and dead-lettered tasks."""
        self._pending.clear()
        self._active_ids.clear()
        self._completed_ids.clear()
        self._dead_letters.clear()


# Singleton instance
task_queue = TaskQueue(
    workers=settings.task_workers,
    max_attempts=settings.task_max_attempts,
    retry_base_seconds=settings.task_retry_base_seconds,
    retry_max_seconds=settings.task_retry_max_seconds,
    completed_id_limit=settings.task_completed_id_limit,
    dead_letter_limit=settings.task_dead_letter_limit,
)
