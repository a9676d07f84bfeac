"""TaskOrchestrator 单元测试

覆盖 Worker Loop 的每条分支：
1. 类型未注册 -> FAILED + 不可恢复
2. 成功 -> COMPLETED + 通知 + 后处理钩子
3. 业务失败 -> FAILED + 不重试
4. 意外异常 -> 非最后一次保持 RUNNING 并重抛，最后一次落 FAILED
5. 终态重投、任务不存在、通知失败
"""

from unittest.mock import AsyncMock

import pytest
from taskweave.core.models import TaskStatus, TaskType, WorkflowResult
from taskweave.core.queue import UnrecoverableError
from taskweave.worker.errors import WorkflowFailedError
from taskweave.worker.hooks import TaskHooks
from taskweave.worker.services.notifier import AGENT_TASK_UPDATED
from taskweave.worker.services.orchestrator import TaskOrchestrator


@pytest.fixture
def hooks() -> TaskHooks:
    return TaskHooks()


@pytest.fixture
def orchestrator(stores, registry, notifier, hooks) -> TaskOrchestrator:
    return TaskOrchestrator(
        task_store=stores.task_store,
        registry=registry,
        notifier=notifier,
        hooks=hooks,
    )


def _statuses(notifier: AsyncMock) -> list[str]:
    return [call.args[2]["status"] for call in notifier.emit_to_user.await_args_list]


class TestUnregisteredWorkflow:
    async def test_fails_and_is_unrecoverable(
        self, orchestrator, task_service, stores, notifier, job_for
    ):
        task = await task_service.create_task("user-1", TaskType.ENTRY_ENRICHMENT, {"entry_id": "e1"})
        notifier.emit_to_user.reset_mock()

        with pytest.raises(UnrecoverableError):
            await orchestrator.process(job_for(task.task_id))

        loaded = await stores.task_store.get_task(task.task_id)
        assert loaded.status == TaskStatus.FAILED
        assert loaded.error == "No workflow registered for task type: ENTRY_ENRICHMENT"
        assert loaded.started_at is not None
        assert _statuses(notifier) == ["RUNNING", "FAILED"]
        assert notifier.emit_to_user.await_args.args[:2] == ("user-1", AGENT_TASK_UPDATED)


class TestSuccess:
    async def test_completed_with_output(
        self, orchestrator, registry, hooks, task_service, stores, notifier, job_for
    ):
        async def tagging(task):
            return WorkflowResult.completed({"tags": ["work"], "entry": task.input_data["entry_id"]})

        registry.register(TaskType.ENTRY_TAGGING, tagging)
        post_action = AsyncMock()
        hooks.on_completed(TaskType.ENTRY_TAGGING, post_action)
        task = await task_service.create_task("user-1", TaskType.ENTRY_TAGGING, {"entry_id": "e1"})

        output = await orchestrator.process(job_for(task.task_id))

        assert output == {"tags": ["work"], "entry": "e1"}
        loaded = await stores.task_store.get_task(task.task_id)
        assert loaded.status == TaskStatus.COMPLETED
        assert loaded.output_data == output
        assert loaded.error is None
        assert loaded.completed_at is not None
        assert _statuses(notifier) == ["RUNNING", "COMPLETED"]
        post_action.assert_awaited_once()
        assert post_action.await_args.args[0].status == TaskStatus.COMPLETED

    async def test_plain_return_value_wrapped(
        self, orchestrator, registry, task_service, stores, job_for
    ):
        async def brain_dump(task):
            return ["item-1", "item-2"]

        registry.register(TaskType.BRAIN_DUMP, brain_dump)
        task = await task_service.create_task("user-1", TaskType.BRAIN_DUMP)

        assert await orchestrator.process(job_for(task.task_id)) == ["item-1", "item-2"]
        loaded = await stores.task_store.get_task(task.task_id)
        assert loaded.output_data == ["item-1", "item-2"]

    async def test_hook_failure_keeps_completed(
        self, orchestrator, registry, hooks, task_service, stores, job_for
    ):
        async def weekly(task):
            return WorkflowResult.completed({"report": "ok"})

        registry.register(TaskType.WEEKLY_ANALYSIS, weekly)
        hooks.on_completed(TaskType.WEEKLY_ANALYSIS, AsyncMock(side_effect=RuntimeError("db down")))
        task = await task_service.create_task("user-1", TaskType.WEEKLY_ANALYSIS)

        await orchestrator.process(job_for(task.task_id))
        assert (await stores.task_store.get_task(task.task_id)).status == TaskStatus.COMPLETED


class TestBusinessFailure:
    async def test_failed_result_not_retried(
        self, orchestrator, registry, hooks, task_service, stores, job_for
    ):
        async def enrich(task):
            return WorkflowResult.failed("Entry not found")

        registry.register(TaskType.ENTRY_ENRICHMENT, enrich)
        cleanup = AsyncMock()
        hooks.on_failed(TaskType.ENTRY_ENRICHMENT, cleanup)
        task = await task_service.create_task("user-1", TaskType.ENTRY_ENRICHMENT)

        with pytest.raises(WorkflowFailedError) as exc_info:
            await orchestrator.process(job_for(task.task_id))

        assert isinstance(exc_info.value, UnrecoverableError)
        loaded = await stores.task_store.get_task(task.task_id)
        assert loaded.status == TaskStatus.FAILED
        assert loaded.error == "Entry not found"
        cleanup.assert_awaited_once()


class TestUnexpectedError:
    async def test_non_final_attempt_stays_running(
        self, orchestrator, registry, task_service, stores, notifier, job_for
    ):
        calls = 0

        async def flaky(task):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("rate limited")
            return WorkflowResult.completed({"ok": True})

        registry.register(TaskType.ENTITY_EXTRACTION, flaky)
        task = await task_service.create_task("user-1", TaskType.ENTITY_EXTRACTION)

        with pytest.raises(RuntimeError):
            await orchestrator.process(job_for(task.task_id, attempt=1))
        assert (await stores.task_store.get_task(task.task_id)).status == TaskStatus.RUNNING

        # 重投：RUNNING 状态继续执行
        assert await orchestrator.process(job_for(task.task_id, attempt=2)) == {"ok": True}
        loaded = await stores.task_store.get_task(task.task_id)
        assert loaded.status == TaskStatus.COMPLETED
        assert _statuses(notifier) == ["RUNNING", "COMPLETED"]

    async def test_final_attempt_marks_failed(
        self, orchestrator, registry, task_service, stores, job_for
    ):
        async def broken(task):
            raise RuntimeError("model unavailable")

        registry.register(TaskType.DAILY_REFLECTION, broken)
        task = await task_service.create_task("user-1", TaskType.DAILY_REFLECTION)

        with pytest.raises(RuntimeError):
            await orchestrator.process(job_for(task.task_id, attempt=3, max_attempts=3))

        loaded = await stores.task_store.get_task(task.task_id)
        assert loaded.status == TaskStatus.FAILED
        assert loaded.error == "model unavailable"

    async def test_empty_message_uses_unknown_error(
        self, orchestrator, registry, task_service, stores, job_for
    ):
        async def broken(task):
            raise RuntimeError()

        registry.register(TaskType.SYNC, broken)
        task = await task_service.create_task("user-1", TaskType.SYNC)

        with pytest.raises(RuntimeError):
            await orchestrator.process(job_for(task.task_id, attempt=1, max_attempts=1))
        assert (await stores.task_store.get_task(task.task_id)).error == "Unknown error"

    async def test_unrecoverable_error_fails_on_first_attempt(
        self, orchestrator, registry, task_service, stores, notifier, job_for
    ):
        async def rejected(task):
            raise UnrecoverableError("input schema mismatch")

        registry.register(TaskType.ENTRY_TAGGING, rejected)
        task = await task_service.create_task("user-1", TaskType.ENTRY_TAGGING)

        with pytest.raises(UnrecoverableError):
            await orchestrator.process(job_for(task.task_id, attempt=1, max_attempts=3))

        loaded = await stores.task_store.get_task(task.task_id)
        assert loaded.status == TaskStatus.FAILED
        assert loaded.error == "input schema mismatch"
        assert _statuses(notifier) == ["RUNNING", "FAILED"]


class TestRedelivery:
    async def test_terminal_task_not_reprocessed(
        self, orchestrator, registry, task_service, stores, job_for
    ):
        execute = AsyncMock(return_value=WorkflowResult.completed({"n": 1}))
        registry.register(TaskType.TAGGING, execute)
        task = await task_service.create_task("user-1", TaskType.TAGGING)

        await orchestrator.process(job_for(task.task_id))
        again = await orchestrator.process(job_for(task.task_id, attempt=2))

        assert again == {"n": 1}
        execute.assert_awaited_once()
        assert (await stores.task_store.get_task(task.task_id)).status == TaskStatus.COMPLETED

    async def test_missing_task_acknowledged(self, orchestrator, job_for):
        assert await orchestrator.process(job_for("does-not-exist")) is None


class TestNotifierFailure:
    async def test_notify_errors_swallowed(self, stores, registry, task_service, job_for):
        async def tagging(task):
            return WorkflowResult.completed({})

        registry.register(TaskType.ENTRY_TAGGING, tagging)
        broken = AsyncMock()
        broken.emit_to_user = AsyncMock(side_effect=ConnectionError("socket closed"))
        orchestrator = TaskOrchestrator(stores.task_store, registry, notifier=broken)
        task = await task_service.create_task("user-1", TaskType.ENTRY_TAGGING)

        await orchestrator.process(job_for(task.task_id))

        assert (await stores.task_store.get_task(task.task_id)).status == TaskStatus.COMPLETED
        assert broken.emit_to_user.await_count == 2
