"""
Tests for the Task Engine — state machine, progress and completion callbacks.
"""

import asyncio

import pytest

from core.errors import InvalidInputError, NotFoundError
from db.models import Task
from workers.task_engine import advance, step_progress

ORG_ID = "org_test"
STEPS = ["validate", "generate_series", "compute_risk", "publish"]


def assert_step_ordering(steps):
    statuses = [s["status"] for s in steps]
    assert statuses.count("running") <= 1
    for i, status in enumerate(statuses):
        if status != "success":
            assert all(s not in ("running", "success") for s in statuses[i + 1 :])


class Recorder:
    def __init__(self):
        self.successes = []
        self.failures = []
        self.steps = []

    async def on_success(self, task):
        self.successes.append(task.id)

    def on_fail(self, task, message):
        self.failures.append((task.id, message))

    async def on_step(self, task, step):
        self.steps.append(step)


# ── Pure state machine ────────────────────────────────────────────────


class TestAdvance:
    def test_advance_ignores_failed_task(self):
        task = Task(id="t", org_id=ORG_ID, kind="model_train", status="failed", progress=40, steps=[], logs=[])
        assert advance(task) == (None, False)
        assert task.status == "failed"


class TestStepProgress:
    def test_first_step_of_four(self):
        assert step_progress(1, 4, 5) == 28

    def test_never_reaches_100_while_running(self):
        assert step_progress(1, 1, 0) == 99

    def test_never_regresses(self):
        assert step_progress(1, 10, 60) == 60


@pytest.mark.asyncio
class TestCreateTask:
    async def test_create_queued(self, task_engine):
        task = await task_engine.create_task(ORG_ID, "forecast_run", STEPS)
        assert task.status == "queued"
        assert task.progress == 0
        assert [s["status"] for s in task.steps] == ["queued"] * 4
        assert task.logs == ["queued"]

    async def test_unknown_kind_rejected(self, task_engine):
        with pytest.raises(InvalidInputError):
            await task_engine.create_task(ORG_ID, "mystery", STEPS)

    async def test_empty_steps_rejected(self, task_engine):
        with pytest.raises(InvalidInputError):
            await task_engine.create_task(ORG_ID, "model_train", [])

    async def test_get_task_scoped_to_org(self, task_engine):
        task = await task_engine.create_task(ORG_ID, "report_generate", ["render"])
        assert (await task_engine.get_task(task.id, ORG_ID)).id == task.id
        with pytest.raises(NotFoundError):
            await task_engine.get_task(task.id, "org_someone_else")

    async def test_list_filters_by_kind(self, task_engine):
        await task_engine.create_task(ORG_ID, "report_generate", ["render"])
        await task_engine.create_task(ORG_ID, "model_train", ["fit"])
        tasks = await task_engine.list_tasks(ORG_ID, kind="model_train")
        assert [t.kind for t in tasks] == ["model_train"]


# ── Manual ticking ────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestTick:
    async def test_progress_monotonic_and_terminal_after_n_plus_one_ticks(self, task_engine):
        task = await task_engine.create_task(ORG_ID, "forecast_run", STEPS)

        progress = []
        for _ in range(len(STEPS) + 1):
            outcome = await task_engine.tick(task.id)
            progress.append(outcome.task.progress)
            assert_step_ordering(outcome.task.steps)
            if outcome.task.status != "success":
                assert outcome.task.progress < 100

        assert progress == [5, 28, 53, 78, 100]
        assert outcome.finished and outcome.succeeded
        assert outcome.task.status == "success"
        assert outcome.task.logs == [
            "queued",
            "started",
            "step:generate_series",
            "step:compute_risk",
            "step:publish",
            "completed",
        ]

    async def test_tick_on_terminal_task_is_noop(self, task_engine):
        task = await task_engine.create_task(ORG_ID, "scenario_run", ["run"])
        await task_engine.tick(task.id)
        await task_engine.tick(task.id)

        outcome = await task_engine.tick(task.id)
        assert outcome.finished
        assert outcome.task.status == "success"
        assert outcome.task.logs.count("completed") == 1

    async def test_tick_missing_task(self, task_engine):
        outcome = await task_engine.tick("task_missing")
        assert outcome.task is None
        assert outcome.finished


# ── Driven runs ───────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestRun:
    async def test_run_to_success(self, task_engine):
        recorder = Recorder()
        task = await task_engine.create_task(ORG_ID, "forecast_run", STEPS)

        handle = task_engine.run(
            task.id, on_success=recorder.on_success, on_fail=recorder.on_fail, on_step=recorder.on_step
        )
        final = await handle.wait(timeout=5)

        assert final.status == "success"
        assert final.progress == 100
        assert final.finished_at is not None
        assert all(s["status"] == "success" for s in final.steps)
        assert recorder.successes == [task.id]
        assert recorder.failures == []
        assert recorder.steps == STEPS

    async def test_throwing_step_handler_fails_task(self, task_engine):
        recorder = Recorder()

        async def explode_on_compute(task, step):
            if step == "compute_risk":
                raise RuntimeError("aquifer model diverged")

        task = await task_engine.create_task(ORG_ID, "forecast_run", STEPS)
        handle = task_engine.run(
            task.id, on_success=recorder.on_success, on_fail=recorder.on_fail, on_step=explode_on_compute
        )
        final = await handle.wait(timeout=5)

        assert final.status == "failed"
        assert final.error_message == "aquifer model diverged"
        assert final.progress < 100
        assert [s["status"] for s in final.steps] == ["success", "success", "failed", "queued"]
        assert recorder.failures == [(task.id, "aquifer model diverged")]
        assert recorder.successes == []

        stored = await task_engine.get_task(task.id, ORG_ID)
        assert stored.status == "failed"
        assert stored.logs[-1] == "failed"

    async def test_on_success_error_leaves_success_in_place(self, task_engine):
        recorder = Recorder()

        def broken_success(task):
            raise ValueError("notification relay down")

        task = await task_engine.create_task(ORG_ID, "report_generate", ["render"])
        handle = task_engine.run(task.id, on_success=broken_success, on_fail=recorder.on_fail)
        await handle.wait(timeout=5)

        stored = await task_engine.get_task(task.id, ORG_ID)
        assert stored.status == "success"
        assert stored.progress == 100
        assert stored.error_message is None
        assert stored.logs[-1] == "completed"
        assert recorder.failures == []

    async def test_completion_hook_commits_with_success(self, task_engine, store):
        observed = []

        async def stamp_result(tx, task):
            task.result = {**(task.result or {}), "artifact": "report.pdf"}

        async def poll(task_id):
            while True:
                async with store.snapshot() as tx:
                    current = await tx.find(Task, Task.id == task_id)
                observed.append((current.status, (current.result or {}).get("artifact")))
                if current.status in ("success", "failed"):
                    return
                await asyncio.sleep(0)

        task = await task_engine.create_task(ORG_ID, "report_generate", ["collect", "render"])
        handle = task_engine.run(task.id, on_complete=stamp_result)
        await asyncio.gather(poll(task.id), poll(task.id), handle.wait(timeout=5))

        assert ("success", "report.pdf") in observed
        assert all(artifact == "report.pdf" for status, artifact in observed if status == "success")

    async def test_completion_hook_error_fails_on_last_step(self, task_engine):
        recorder = Recorder()

        def broken_publish(tx, task):
            raise RuntimeError("disk full")

        task = await task_engine.create_task(ORG_ID, "forecast_run", STEPS)
        handle = task_engine.run(
            task.id, on_success=recorder.on_success, on_fail=recorder.on_fail, on_complete=broken_publish
        )
        await handle.wait(timeout=5)

        stored = await task_engine.get_task(task.id, ORG_ID)
        assert stored.status == "failed"
        assert not (stored.status == "failed" and stored.progress == 100)
        assert stored.progress == 78
        assert [s["status"] for s in stored.steps] == ["success", "success", "success", "failed"]
        assert "completed" not in stored.logs
        assert stored.logs[-1] == "failed"
        assert recorder.failures == [(task.id, "disk full")]
        assert recorder.successes == []

    async def test_abort_hook_runs_with_failure(self, task_engine):
        aborted = []

        def step_boom(task, step):
            raise RuntimeError("sensor feed missing")

        def on_abort(tx, task, message):
            aborted.append((task.status, message))

        task = await task_engine.create_task(ORG_ID, "scenario_run", ["prepare", "simulate"])
        final = await task_engine.run(task.id, on_step=step_boom, on_abort=on_abort).wait(timeout=5)

        assert final.status == "failed"
        assert aborted == [("failed", "sensor feed missing")]

    async def test_broken_abort_hook_still_records_failure(self, task_engine):
        recorder = Recorder()

        def step_boom(task, step):
            raise RuntimeError("boom")

        def broken_abort(tx, task, message):
            raise RuntimeError("abort boom")

        task = await task_engine.create_task(ORG_ID, "scenario_run", ["prepare"])
        handle = task_engine.run(task.id, on_fail=recorder.on_fail, on_step=step_boom, on_abort=broken_abort)
        await handle.wait(timeout=5)

        stored = await task_engine.get_task(task.id, ORG_ID)
        assert stored.status == "failed"
        assert stored.error_message == "boom"
        assert recorder.failures == [(task.id, "boom")]

    async def test_second_run_for_same_task_rejected(self, task_engine):
        task = await task_engine.create_task(ORG_ID, "scenario_run", ["a", "b"])
        handle = task_engine.run(task.id)

        with pytest.raises(InvalidInputError):
            task_engine.run(task.id)
        assert task_engine.active_count == 1

        final = await handle.wait(timeout=5)
        await task_engine.join(timeout=5)
        assert final.status == "success"
        assert final.logs.count("completed") == 1
        assert task_engine.active_count == 0

    async def test_failing_on_fail_still_resolves_handle(self, task_engine):
        def step_boom(task, step):
            raise RuntimeError("boom")

        def fail_boom(task, message):
            raise RuntimeError("callback boom")

        task = await task_engine.create_task(ORG_ID, "model_train", ["fit"])
        handle = task_engine.run(task.id, on_fail=fail_boom, on_step=step_boom)
        final = await handle.wait(timeout=5)

        assert handle.done()
        assert final.status == "failed"
        assert final.error_message == "boom"

    async def test_join_waits_for_all_drivers(self, task_engine):
        tasks = [await task_engine.create_task(ORG_ID, "scenario_run", ["a", "b"]) for _ in range(3)]
        for task in tasks:
            task_engine.run(task.id)
        assert task_engine.active_count == 3

        await task_engine.join(timeout=5)

        assert task_engine.active_count == 0
        for task in tasks:
            assert (await task_engine.get_task(task.id, ORG_ID)).status == "success"
