"""内置 workflow

- 简单的同步型任务还没有独立 workflow，注册为 no-op：
  结果在生产端已经生效，worker 只负责把任务推进到 COMPLETED。
- MEMORY_FLUSH：把用户最早的 count 轮短期记忆交给整理钩子（提炼长期知识），
  再从短期记忆中删除。未提供钩子时只做裁剪。
"""

from collections.abc import Awaitable, Callable, Iterable

import structlog
from taskweave.core.config import MEMORY_FLUSH_COUNT
from taskweave.core.models import ChatTurn, Task, TaskType, WorkflowResult
from taskweave.core.store import ChatMemoryStore

from ..registry import WorkflowExecutor, WorkflowRegistry

log = structlog.get_logger()

SYNC_NOOP_TYPES: tuple[TaskType, ...] = (
    TaskType.REMINDER_CREATE,
    TaskType.GOAL_CREATE,
    TaskType.KNOWLEDGE_QUERY,
    TaskType.DAILY_BRIEFING,
)

# (user_id, 待整理的最早若干轮) -> 提炼出的观察条数
MemorySummarizer = Callable[[str, list[ChatTurn]], Awaitable[int]]


async def sync_noop(task: Task) -> WorkflowResult:
    return WorkflowResult.completed({"processed": True, "sync": True})


def memory_flush_workflow(
    memory: ChatMemoryStore,
    summarize: MemorySummarizer | None = None,
) -> WorkflowExecutor:
    """构造 MEMORY_FLUSH workflow

    Args:
        memory: 短期记忆存储
        summarize: 整理钩子；抛异常时本次 workflow 失败，短期记忆保持不变

    Returns:
        workflow 执行器，输入 {"count": n}
    """

    async def run_memory_flush(task: Task) -> WorkflowResult:
        count = int((task.input_data or {}).get("count", MEMORY_FLUSH_COUNT))
        history = await memory.get_history(task.user_id)
        if len(history) < count:
            return WorkflowResult.completed({"message": "Not enough history to flush"})

        observations = 0
        if summarize is not None:
            try:
                observations = await summarize(task.user_id, history[:count])
            except Exception as e:
                log.error(
                    "memory_flush_summarize_failed",
                    task_id=task.task_id,
                    user_id=task.user_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return WorkflowResult.failed(str(e) or type(e).__name__)

        removed = await memory.remove_oldest(task.user_id, count)
        log.info(
            "memory_flush_completed",
            task_id=task.task_id,
            user_id=task.user_id,
            flushed=removed,
            observations=observations,
        )
        return WorkflowResult.completed({"flushed_count": removed, "observations_found": observations})

    return run_memory_flush


def register_default_workflows(
    registry: WorkflowRegistry,
    workflows: dict[TaskType, WorkflowExecutor] | None = None,
    noop_types: Iterable[TaskType] = SYNC_NOOP_TYPES,
    memory: ChatMemoryStore | None = None,
    summarize: MemorySummarizer | None = None,
) -> None:
    """注册内置 workflow 以及嵌入方提供的 workflow

    Args:
        registry: 目标注册表
        workflows: 嵌入方提供的额外 workflow，不能与内置类型重复
        noop_types: 注册为 no-op 的同步型任务类型
        memory: 提供时注册内置 MEMORY_FLUSH
        summarize: MEMORY_FLUSH 的整理钩子

    Raises:
        WorkflowAlreadyRegisteredError: 额外 workflow 与内置类型冲突
    """
    for task_type in noop_types:
        registry.register(task_type, sync_noop)
    if memory is not None:
        registry.register(TaskType.MEMORY_FLUSH, memory_flush_workflow(memory, summarize))
    for task_type, execute in (workflows or {}).items():
        registry.register(task_type, execute)
