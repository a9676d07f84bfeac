"""TaskHooks -- 按任务类型注册的后处理 / 失败清理回调

后处理（on_completed）是尽力而为的 post-action：
失败只记录日志并体现在 PostActionResult 中，绝不改变 COMPLETED 状态。
失败清理（on_failed）同理，失败不掩盖原始错误。

典型用法（由嵌入方提供领域回调）：
- ENTRY_ENRICHMENT 成功：标记外部 entry 为 ready
- WEEKLY_ANALYSIS / MONTHLY_ANALYSIS 成功：创建报告
- ENTRY_ENRICHMENT 失败：entry 仍在 processing 时标记为 failed
"""

from collections import defaultdict
from collections.abc import Awaitable, Callable

import structlog
from pydantic import BaseModel, Field
from taskweave.core.models import Task, TaskType

log = structlog.get_logger()

TaskHook = Callable[[Task], Awaitable[None]]


class PostActionResult(BaseModel):
    """一次钩子执行的结果"""

    hook: str = Field(description="钩子名称")
    ok: bool
    error: str | None = None


class TaskHooks:
    """任务钩子注册表"""

    def __init__(self) -> None:
        self._on_completed: dict[TaskType, list[TaskHook]] = defaultdict(list)
        self._on_failed: dict[TaskType, list[TaskHook]] = defaultdict(list)

    def on_completed(self, task_type: TaskType | str, hook: TaskHook) -> None:
        self._on_completed[TaskType(task_type)].append(hook)

    def on_failed(self, task_type: TaskType | str, hook: TaskHook) -> None:
        self._on_failed[TaskType(task_type)].append(hook)

    async def run_completed(self, task: Task) -> list[PostActionResult]:
        """执行成功后处理钩子"""
        return await self._run(self._on_completed.get(task.type, []), task, "completed")

    async def run_failed(self, task: Task) -> list[PostActionResult]:
        """执行失败清理钩子"""
        return await self._run(self._on_failed.get(task.type, []), task, "failed")

    async def _run(self, hooks: list[TaskHook], task: Task, phase: str) -> list[PostActionResult]:
        results: list[PostActionResult] = []
        for hook in hooks:
            name = getattr(hook, "__qualname__", None) or repr(hook)
            try:
                await hook(task)
            except Exception as e:
                log.error(
                    "task_hook_failed",
                    task_id=task.task_id,
                    task_type=task.type.value,
                    phase=phase,
                    hook=name,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                results.append(PostActionResult(hook=name, ok=False, error=str(e)))
            else:
                results.append(PostActionResult(hook=name, ok=True))
        return results
