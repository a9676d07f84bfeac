"""TaskService -- 任务生产者 API

创建流程：
1. 写入 PENDING Task 记录
2. 投递 {"task_id": ...} 到任务队列
3. 入队失败：标记 FAILED("Failed to enqueue task") 并返回该记录，不向调用方抛出

生产者立即返回 PENDING 记录，执行结果通过实时通知或查询获取。
"""

from datetime import UTC, datetime
from typing import Any

import structlog
from taskweave.core.models import RetryPolicy, Task, TaskStatus, TaskType
from taskweave.core.queue import SqliteQueue
from taskweave.core.store import TaskStore
from ulid import ULID

from .notifier import AGENT_TASK_UPDATED, UserNotifier

log = structlog.get_logger()

ENQUEUE_FAILED_ERROR = "Failed to enqueue task"


class TaskService:
    """任务业务服务"""

    def __init__(
        self,
        task_store: TaskStore,
        queue: SqliteQueue,
        queue_name: str,
        retry_policy: RetryPolicy | None = None,
        notifier: UserNotifier | None = None,
    ) -> None:
        self._task_store = task_store
        self._queue = queue
        self._queue_name = queue_name
        self._retry_policy = retry_policy or RetryPolicy()
        self._notifier = notifier

    async def create_task(
        self,
        user_id: str,
        task_type: TaskType | str,
        input_data: dict[str, Any] | None = None,
    ) -> Task:
        """创建任务并投递到队列

        Args:
            user_id: 所属用户
            task_type: 任务类型
            input_data: workflow 输入

        Returns:
            新建的 Task（通常为 PENDING；入队失败时为 FAILED）
        """
        now = datetime.now(UTC)
        task = Task(
            task_id=str(ULID()),
            user_id=user_id,
            type=TaskType(task_type),
            status=TaskStatus.PENDING,
            input_data=input_data or {},
            created_at=now,
            updated_at=now,
        )
        await self._task_store.create_task(task)

        try:
            await self._queue.enqueue(
                self._queue_name,
                task.type.value,
                {"task_id": task.task_id},
                retry_policy=self._retry_policy,
            )
        except Exception as e:
            log.error(
                "task_enqueue_failed",
                task_id=task.task_id,
                task_type=task.type.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            failed_at = datetime.now(UTC)
            await self._task_store.transition_task(
                task.task_id,
                TaskStatus.PENDING,
                TaskStatus.FAILED,
                failed_at,
                error=ENQUEUE_FAILED_ERROR,
            )
            task = task.model_copy(
                update={
                    "status": TaskStatus.FAILED,
                    "error": ENQUEUE_FAILED_ERROR,
                    "updated_at": failed_at,
                    "completed_at": failed_at,
                }
            )
            await self._notify(task)
            return task

        log.info(
            "task_enqueued",
            task_id=task.task_id,
            task_type=task.type.value,
            user_id=user_id,
        )
        return task

    async def get_task(self, task_id: str, user_id: str | None = None) -> Task | None:
        """查询任务；指定 user_id 时只返回该用户的任务"""
        task = await self._task_store.get_task(task_id)
        if task is None:
            return None
        if user_id is not None and task.user_id != user_id:
            return None
        return task

    async def list_user_tasks(self, user_id: str, limit: int = 20) -> list[Task]:
        """列出用户最近的任务（新的在前）"""
        return await self._task_store.list_tasks(user_id=user_id, limit=limit)

    async def find_recent(
        self,
        user_id: str,
        task_type: TaskType | str,
        statuses: set[TaskStatus] | None = None,
        created_after: datetime | None = None,
    ) -> Task | None:
        """幂等检查：查找用户最近一条满足条件的同类型任务

        Args:
            user_id: 所属用户
            task_type: 任务类型
            statuses: 允许的状态集合，None 表示不限
            created_after: 只看此时间之后创建的任务
        """
        tasks = await self._task_store.list_tasks(
            user_id=user_id,
            task_type=TaskType(task_type),
            created_after=created_after,
        )
        for task in tasks:
            if statuses is None or task.status in statuses:
                return task
        return None

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
