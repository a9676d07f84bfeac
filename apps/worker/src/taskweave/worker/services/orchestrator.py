"""TaskOrchestrator -- 队列消息 -> Task 生命周期推进

每条消息的处理流程：
1. 按 task_id 加载 Task；不存在则记录错误并确认消息
2. 终态 Task（终结后被重投）：直接返回已存结果，不改状态
   PENDING -> RUNNING（写 started_at 并通知）；RUNNING（重投的后续尝试）原样继续
3. 未注册类型：FAILED 并抛 UnrecoverableError，队列不再重试
4. 调用 workflow
5. 成功：COMPLETED + output，通知，执行后处理钩子（失败不影响 COMPLETED）
6. 业务失败：FAILED + error，通知，执行失败清理钩子，抛 WorkflowFailedError（不重试）
   意外异常：最后一次尝试或 UnrecoverableError 落 FAILED；其余尝试保持 RUNNING；
   总是重新抛出交给队列重试策略

通知失败只记录日志，从不影响状态流转。
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from taskweave.core.models import (
    TERMINAL_STATES,
    JobContext,
    Task,
    TaskStatus,
    WorkflowResult,
    WorkflowStatus,
)
from taskweave.core.queue import UnrecoverableError
from taskweave.core.store import TaskStore

from ..errors import WorkflowFailedError, WorkflowNotRegisteredError
from ..hooks import TaskHooks
from ..registry import WorkflowRegistry
from .notifier import AGENT_TASK_UPDATED, UserNotifier

log = structlog.get_logger()

UNKNOWN_ERROR = "Unknown error"


class TaskOrchestrator:
    """Worker Loop：单条队列消息的处理器"""

    def __init__(
        self,
        task_store: TaskStore,
        registry: WorkflowRegistry,
        notifier: UserNotifier | None = None,
        hooks: TaskHooks | None = None,
    ) -> None:
        self._task_store = task_store
        self._registry = registry
        self._notifier = notifier
        self._hooks = hooks or TaskHooks()

    async def process(self, job: JobContext) -> Any:
        """处理一条队列消息（QueueWorker handler）

        Returns:
            workflow 输出（终态重投时返回已存输出）

        Raises:
            UnrecoverableError: 类型未注册或 workflow 业务失败
            Exception: workflow 意外异常，原样抛出
        """
        task_id = job.payload.get("task_id")
        task = await self._task_store.get_task(task_id) if task_id else None
        if task is None:
            log.error("task_not_found", task_id=task_id, job_id=job.job_id)
            return None

        if task.status in TERMINAL_STATES:
            log.info(
                "task_already_finalized",
                task_id=task.task_id,
                task_type=task.type.value,
                status=task.status.value,
                job_id=job.job_id,
            )
            return task.output_data

        if task.status == TaskStatus.PENDING:
            task = await self._start(task)
            if task.status in TERMINAL_STATES:
                log.info("task_finalized_concurrently", task_id=task.task_id, job_id=job.job_id)
                return task.output_data
        else:
            log.info(
                "task_resumed",
                task_id=task.task_id,
                task_type=task.type.value,
                attempt=job.attempt,
            )

        try:
            execute = self._registry.get_workflow(task.type)
        except WorkflowNotRegisteredError as e:
            await self._fail(task, str(e))
            raise UnrecoverableError(str(e)) from e

        try:
            outcome = await execute(task)
        except Exception as e:
            error = str(e) or UNKNOWN_ERROR
            # 不可恢复错误不会再重试，和最后一次尝试一样立即落 FAILED
            if job.is_final_attempt or isinstance(e, UnrecoverableError):
                log.error(
                    "task_failed",
                    task_id=task.task_id,
                    task_type=task.type.value,
                    attempt=job.attempt,
                    error_type=type(e).__name__,
                    error=error,
                )
                await self._fail(task, error)
            else:
                log.warning(
                    "task_attempt_failed",
                    task_id=task.task_id,
                    task_type=task.type.value,
                    attempt=job.attempt,
                    max_attempts=job.max_attempts,
                    error_type=type(e).__name__,
                    error=error,
                )
            raise

        result = outcome if isinstance(outcome, WorkflowResult) else WorkflowResult.completed(outcome)
        if result.status == WorkflowStatus.FAILED:
            error = result.error or UNKNOWN_ERROR
            log.warning(
                "task_workflow_failed",
                task_id=task.task_id,
                task_type=task.type.value,
                error=error,
            )
            await self._fail(task, error)
            raise WorkflowFailedError(task.task_id, error)

        await self._complete(task, result.result)
        return result.result

    async def _start(self, task: Task) -> Task:
        """PENDING -> RUNNING"""
        now = datetime.now(UTC)
        changed = await self._task_store.transition_task(
            task.task_id,
            TaskStatus.PENDING,
            TaskStatus.RUNNING,
            now,
        )
        if not changed:
            # 并发写者已推进，按库中状态继续
            current = await self._task_store.get_task(task.task_id)
            return current or task

        running = task.model_copy(
            update={"status": TaskStatus.RUNNING, "started_at": now, "updated_at": now}
        )
        log.info("task_started", task_id=task.task_id, task_type=task.type.value)
        await self._notify(running)
        return running

    async def _complete(self, task: Task, output: Any) -> None:
        """RUNNING -> COMPLETED + 后处理钩子"""
        now = datetime.now(UTC)
        changed = await self._task_store.transition_task(
            task.task_id,
            TaskStatus.RUNNING,
            TaskStatus.COMPLETED,
            now,
            output_data=output,
        )
        if not changed:
            log.warning("task_complete_conflict", task_id=task.task_id)
            return

        completed = task.model_copy(
            update={
                "status": TaskStatus.COMPLETED,
                "output_data": output,
                "updated_at": now,
                "completed_at": now,
            }
        )
        log.info("task_completed", task_id=task.task_id, task_type=task.type.value)
        await self._notify(completed)
        await self._hooks.run_completed(completed)

    async def _fail(self, task: Task, error: str) -> None:
        """RUNNING -> FAILED + 失败清理钩子"""
        now = datetime.now(UTC)
        changed = await self._task_store.transition_task(
            task.task_id,
            TaskStatus.RUNNING,
            TaskStatus.FAILED,
            now,
            error=error,
        )
        if not changed:
            log.warning("task_fail_conflict", task_id=task.task_id)
            return

        failed = task.model_copy(
            update={
                "status": TaskStatus.FAILED,
                "error": error,
                "updated_at": now,
                "completed_at": now,
            }
        )
        await self._notify(failed)
        await self._hooks.run_failed(failed)

    async def notify_task(self, task: Task) -> None:
        """对外暴露的通知入口（巡检失败回调复用）"""
        await self._notify(task)

    async def _notify(self, task: Task) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.emit_to_user(
                task.user_id,
                AGENT_TASK_UPDATED,
                task.model_dump(mode="json"),
            )
        except Exception as e:
            log.warning(
                "task_notify_failed",
                task_id=task.task_id,
                error_type=type(e).__name__,
                error=str(e),
            )
