"""TaskReconciler -- 卡死任务自愈巡检

Task 记录与队列消息之间没有分布式事务，崩溃或入队丢失会留下永远不会推进的记录：
- RUNNING 超过 stale_running_after_s：视为 worker 已放弃，标记 FAILED
- PENDING 超过 stale_pending_after_s 且队列中没有引用它的存活消息：标记 FAILED

巡检只做 RUNNING/PENDING -> FAILED 的条件流转，不会覆盖并发写者的结果。
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import structlog
from pydantic import BaseModel, Field

from .models.enums import TaskStatus
from .models.task import Task
from .queue.sqlite_queue import SqliteQueue
from .store.protocols import TaskStore

log = structlog.get_logger()

STALE_RUNNING_ERROR = "Task exceeded maximum running time"
NEVER_DISPATCHED_ERROR = "Task was never dispatched"

FailedCallback = Callable[[Task], Awaitable[None]]


class ReconcileReport(BaseModel):
    """单次巡检结果"""

    stale_running: list[str] = Field(default_factory=list, description="因超时失败的 task_id")
    never_dispatched: list[str] = Field(
        default_factory=list,
        description="因未被投递失败的 task_id",
    )

    @property
    def total(self) -> int:
        return len(self.stale_running) + len(self.never_dispatched)


class TaskReconciler:
    """周期性巡检卡在非终态的任务"""

    def __init__(
        self,
        task_store: TaskStore,
        queue: SqliteQueue,
        queue_name: str,
        stale_running_after_s: int = 3600,
        stale_pending_after_s: int = 3600,
        on_failed: FailedCallback | None = None,
    ) -> None:
        """
        Args:
            task_store: Task 存储
            queue: 队列（用于判断 PENDING 任务是否仍有存活消息）
            queue_name: 任务队列名称
            stale_running_after_s: RUNNING 超时阈值（秒）
            stale_pending_after_s: PENDING 丢失阈值（秒）
            on_failed: 任务被标记失败后的回调（如推送通知），异常只记录日志
        """
        self._task_store = task_store
        self._queue = queue
        self._queue_name = queue_name
        self._stale_running_after = timedelta(seconds=stale_running_after_s)
        self._stale_pending_after = timedelta(seconds=stale_pending_after_s)
        self._on_failed = on_failed

    async def sweep(self, now: datetime | None = None) -> ReconcileReport:
        """执行一次巡检"""
        now = now or datetime.now(UTC)
        report = ReconcileReport()

        for task in await self._task_store.list_stale(
            TaskStatus.RUNNING,
            now - self._stale_running_after,
        ):
            if await self._fail(task, TaskStatus.RUNNING, STALE_RUNNING_ERROR, now):
                report.stale_running.append(task.task_id)

        for task in await self._task_store.list_stale(
            TaskStatus.PENDING,
            now - self._stale_pending_after,
        ):
            if await self._queue.has_live_job(self._queue_name, task.task_id):
                continue
            if await self._fail(task, TaskStatus.PENDING, NEVER_DISPATCHED_ERROR, now):
                report.never_dispatched.append(task.task_id)

        if report.total:
            log.warning(
                "reconcile_sweep_failed_tasks",
                stale_running=len(report.stale_running),
                never_dispatched=len(report.never_dispatched),
            )
        else:
            log.debug("reconcile_sweep_clean")
        return report

    async def _fail(
        self,
        task: Task,
        from_status: TaskStatus,
        error: str,
        now: datetime,
    ) -> bool:
        changed = await self._task_store.transition_task(
            task.task_id,
            from_status,
            TaskStatus.FAILED,
            now,
            error=error,
        )
        if not changed:
            return False

        log.warning(
            "task_reconciled_failed",
            task_id=task.task_id,
            task_type=task.type.value,
            from_status=from_status.value,
            error=error,
        )
        if self._on_failed is not None:
            try:
                failed = await self._task_store.get_task(task.task_id)
                if failed is not None:
                    await self._on_failed(failed)
            except Exception as e:
                log.warning(
                    "reconcile_callback_failed",
                    task_id=task.task_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
        return True
