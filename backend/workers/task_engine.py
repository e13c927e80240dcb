"""
Task Engine — lifecycle of long-running stepped tasks.

A task is created ``queued`` and driven by an asyncio driver that ticks it
through its steps, one step per tick:

  queued ──tick──▶ running(step 0) ──tick──▶ running(step 1) ... ──tick──▶ success
                          │
                          └── exception in a tick or hook ──▶ failed

A task with n steps reaches a terminal state after exactly n + 1 ticks.
Progress never regresses and is 100 only on success. ``on_complete`` runs
inside the transaction that commits the success transition, so whatever it
writes becomes visible together with ``status=success``; if it raises, the
whole tick rolls back and the task fails instead. ``on_abort`` is the
failure counterpart and runs in the transaction that records ``failed``.
A terminal state is never rewritten. Exactly one of ``on_success`` /
``on_fail`` is invoked per run, after the terminal state is committed.
"""

from __future__ import annotations

import asyncio
import inspect
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import partial
from typing import Any

import structlog

from core.config import get_settings
from core.errors import InvalidInputError, NotFoundError
from db.models import TASK_KINDS, TASK_STATUSES, TERMINAL_TASK_STATUSES, Task, generate_id, utcnow
from db.store import DocumentStore, StoreTransaction

logger = structlog.get_logger()

PROGRESS_FLOOR = 5
PROGRESS_CEILING_RUNNING = 99

SuccessCallback = Callable[[Task], Awaitable[None] | None]
FailCallback = Callable[[Task, str], Awaitable[None] | None]
StepCallback = Callable[[Task, str], Awaitable[None] | None]
CompleteCallback = Callable[[StoreTransaction, Task], Awaitable[None] | None]
AbortCallback = Callable[[StoreTransaction, Task, str], Awaitable[None] | None]


@dataclass
class TickResult:
    task: Task | None
    finished: bool
    succeeded: bool = False


class TaskHandle:
    """Completion handle for one ``TaskEngine.run`` call."""

    def __init__(self, task_id: str, future: asyncio.Future):
        self.task_id = task_id
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    async def wait(self, timeout: float | None = None) -> Task | None:
        """Wait for the terminal task snapshot (None if the task vanished)."""
        return await asyncio.wait_for(asyncio.shield(self._future), timeout)


def step_progress(next_index: int, step_count: int, previous: int) -> int:
    """Progress once step ``next_index`` has started: slightly ahead, never 100, never backwards."""
    estimate = math.floor(100 * (next_index + 0.1) / step_count + 0.5)
    return max(previous, min(estimate, PROGRESS_CEILING_RUNNING))


def _complete(task: Task, now) -> None:
    task.status = "success"
    task.progress = 100
    task.finished_at = now
    task.logs = [*task.logs, "completed"]


def advance(task: Task, now=None) -> tuple[str | None, bool]:
    """
    Apply one tick to ``task`` in place.

    Returns ``(started_step, completed)``: the name of the step that started
    running this tick (if any) and whether the task reached success.
    """
    now = now or utcnow()
    steps = [dict(step) for step in task.steps]

    if task.status == "queued":
        task.status = "running"
        task.started_at = now
        task.logs = [*task.logs, "started"]
        task.progress = max(task.progress or 0, PROGRESS_FLOOR)
        if not steps:
            _complete(task, now)
            return None, True
        steps[0]["status"] = "running"
        task.steps = steps
        return steps[0]["name"], False

    if task.status != "running":
        return None, False

    idx = next((i for i, step in enumerate(steps) if step["status"] == "running"), None)
    if idx is None:
        _complete(task, now)
        return None, True

    steps[idx]["status"] = "success"
    nxt = idx + 1
    if nxt < len(steps):
        steps[nxt]["status"] = "running"
        task.steps = steps
        task.logs = [*task.logs, f"step:{steps[nxt]['name']}"]
        task.progress = step_progress(nxt, len(steps), task.progress)
        return steps[nxt]["name"], False

    task.steps = steps
    _complete(task, now)
    return None, True


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class TaskEngine:
    """Creates tasks and drives them to a terminal state on the running event loop."""

    def __init__(self, store: DocumentStore, *, step_interval_seconds: float | None = None):
        self._store = store
        if step_interval_seconds is None:
            step_interval_seconds = get_settings().task_step_interval_seconds
        self._step_interval = max(0.0, float(step_interval_seconds))
        self._drivers: dict[str, asyncio.Task] = {}

    @property
    def active_count(self) -> int:
        return len(self._drivers)

    async def create_task(
        self,
        org_id: str,
        kind: str,
        step_names: list[str],
        result: dict | None = None,
    ) -> Task:
        if kind not in TASK_KINDS:
            raise InvalidInputError(f"Unknown task kind: {kind}")
        if not step_names:
            raise InvalidInputError("A task needs at least one step")

        task = Task(
            id=generate_id("task"),
            org_id=org_id,
            kind=kind,
            status="queued",
            progress=0,
            steps=[{"name": name, "status": "queued"} for name in step_names],
            logs=["queued"],
            result=result,
            created_at=utcnow(),
        )
        async with self._store.transaction() as tx:
            tx.add(task)
        logger.info("task.created", task_id=task.id, org_id=org_id, kind=kind, steps=len(step_names))
        return task

    async def get_task(self, task_id: str, org_id: str) -> Task:
        task = await self._store.find(Task, Task.id == task_id, Task.org_id == org_id)
        if task is None:
            raise NotFoundError("Task not found")
        return task

    async def list_tasks(
        self,
        org_id: str,
        *,
        kind: str | None = None,
        status: str | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Task]:
        criteria = [Task.org_id == org_id]
        if kind:
            criteria.append(Task.kind == kind)
        if status:
            if status not in TASK_STATUSES:
                raise InvalidInputError(f"Unknown task status: {status}")
            criteria.append(Task.status == status)
        return await self._store.find_all(
            Task, *criteria, order_by=Task.created_at.desc(), offset=skip, limit=limit
        )

    async def tick(
        self,
        task_id: str,
        on_step: StepCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> TickResult:
        """Advance one task by a single state-machine step."""
        async with self._store.transaction() as tx:
            task = await tx.find(Task, Task.id == task_id)
            if task is None:
                return TickResult(task=None, finished=True)
            if task.status in TERMINAL_TASK_STATUSES:
                return TickResult(task=task, finished=True)
            started_step, completed = advance(task)
            if completed:
                await _invoke(on_complete, tx, task)

        if started_step is not None:
            logger.info("task.step_started", task_id=task_id, step=started_step, progress=task.progress)
            await _invoke(on_step, task, started_step)
        return TickResult(task=task, finished=completed, succeeded=completed)

    def run(
        self,
        task_id: str,
        *,
        on_success: SuccessCallback | None = None,
        on_fail: FailCallback | None = None,
        on_step: StepCallback | None = None,
        on_complete: CompleteCallback | None = None,
        on_abort: AbortCallback | None = None,
    ) -> TaskHandle:
        """Start driving ``task_id`` in the background and return immediately."""
        if task_id in self._drivers:
            raise InvalidInputError(f"Task {task_id} is already running")

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        driver = loop.create_task(
            self._drive(task_id, future, on_success, on_fail, on_step, on_complete, on_abort),
            name=f"task-driver:{task_id}",
        )
        self._drivers[task_id] = driver
        driver.add_done_callback(partial(self._forget_driver, task_id))
        return TaskHandle(task_id, future)

    def _forget_driver(self, task_id: str, driver: asyncio.Task) -> None:
        if self._drivers.get(task_id) is driver:
            del self._drivers[task_id]

    async def join(self, timeout: float | None = None) -> None:
        """Wait until every active driver has finished."""
        drivers = list(self._drivers.values())
        if drivers:
            await asyncio.wait_for(asyncio.gather(*drivers), timeout)

    async def _drive(
        self,
        task_id: str,
        future: asyncio.Future,
        on_success: SuccessCallback | None,
        on_fail: FailCallback | None,
        on_step: StepCallback | None,
        on_complete: CompleteCallback | None,
        on_abort: AbortCallback | None,
    ) -> None:
        task: Task | None = None
        try:
            while True:
                try:
                    outcome = await self.tick(task_id, on_step=on_step, on_complete=on_complete)
                except Exception as exc:  # noqa: BLE001 - any tick error is a task failure
                    task = await self._fail(task_id, exc, on_abort)
                    if task is not None and task.status == "failed":
                        await self._notify_failure(task, on_fail)
                    return

                task = outcome.task
                if outcome.finished:
                    break
                await asyncio.sleep(self._step_interval)

            if outcome.succeeded:
                logger.info("task.completed", task_id=task_id, kind=task.kind)
                try:
                    await _invoke(on_success, task)
                except Exception:  # noqa: BLE001 - success is already committed and final
                    logger.error("task.on_success_callback_failed", task_id=task_id, exc_info=True)
        finally:
            if not future.done():
                future.set_result(task)

    async def _fail(
        self, task_id: str, exc: BaseException, on_abort: AbortCallback | None = None
    ) -> Task | None:
        message = str(exc) or exc.__class__.__name__
        try:
            task, recorded = await self._record_failure(task_id, message, on_abort)
        except Exception:  # noqa: BLE001 - the failure itself must still be recorded
            logger.error("task.on_abort_hook_failed", task_id=task_id, exc_info=True)
            task, recorded = await self._record_failure(task_id, message, None)
        if recorded:
            logger.error("task.failed", task_id=task_id, error=message, exc_info=exc)
        return task

    async def _record_failure(
        self, task_id: str, message: str, on_abort: AbortCallback | None
    ) -> tuple[Task | None, bool]:
        async with self._store.transaction() as tx:
            task = await tx.find(Task, Task.id == task_id)
            if task is None or task.status in TERMINAL_TASK_STATUSES:
                return task, False
            task.status = "failed"
            task.error_message = message
            task.finished_at = utcnow()
            task.steps = [
                {**step, "status": "failed"} if step["status"] == "running" else dict(step)
                for step in task.steps
            ]
            task.logs = [*task.logs, "failed"]
            await _invoke(on_abort, tx, task, message)
        return task, True

    async def _notify_failure(self, task: Task, on_fail: FailCallback | None) -> None:
        try:
            await _invoke(on_fail, task, task.error_message)
        except Exception:  # noqa: BLE001 - the task is already terminal; keep the loop alive
            logger.error("task.on_fail_callback_failed", task_id=task.id, exc_info=True)

