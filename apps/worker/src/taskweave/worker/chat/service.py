"""AgentChatService -- 对话入口：记忆持久化 + 对话循环 + 记忆整理

1. 持久化用户消息
2. 运行对话循环
3. 得到最终回答时持久化 agent 回复；短期记忆达到阈值时创建
   MEMORY_FLUSH 与 COGNITIVE_CONSOLIDATION 任务（尽力而为，失败只记录日志）。
   给定注册表时跳过没有 workflow 的类型，避免产生注定失败的任务
"""

import structlog
from taskweave.core.config import MEMORY_FLUSH_COUNT, MEMORY_FLUSH_THRESHOLD
from taskweave.core.models import ChatRole, ChatTurn, TaskType
from taskweave.core.store import ChatMemoryStore

from ..registry import WorkflowRegistry
from ..services.task_service import TaskService
from .loop import ToolCallingChatLoop

log = structlog.get_logger()


class AgentChatService:
    """对话服务"""

    def __init__(
        self,
        memory: ChatMemoryStore,
        loop: ToolCallingChatLoop,
        task_service: TaskService,
        flush_threshold: int = MEMORY_FLUSH_THRESHOLD,
        flush_count: int = MEMORY_FLUSH_COUNT,
        registry: WorkflowRegistry | None = None,
    ) -> None:
        self._memory = memory
        self._loop = loop
        self._task_service = task_service
        self._flush_threshold = flush_threshold
        self._flush_count = flush_count
        self._registry = registry

    async def chat(self, user_id: str, message: str) -> str:
        """主对话入口"""
        await self._memory.add_message(user_id, ChatRole.USER, message)

        async def on_finish(answer: str) -> None:
            await self._memory.add_message(user_id, ChatRole.AGENT, answer)
            await self._check_memory_flush(user_id)

        return await self._loop.run(user_id, message, on_finish=on_finish)

    async def get_chat_history(self, user_id: str) -> list[ChatTurn]:
        return await self._memory.get_history(user_id)

    async def clear_history(self, user_id: str) -> None:
        await self._memory.clear(user_id)

    async def _check_memory_flush(self, user_id: str) -> None:
        """短期记忆达到阈值时触发整理任务"""
        try:
            history = await self._memory.get_history(user_id)
            if len(history) < self._flush_threshold:
                return
            log.info(
                "memory_flush_triggered",
                user_id=user_id,
                history_size=len(history),
            )
            for task_type, input_data in (
                (TaskType.MEMORY_FLUSH, {"count": self._flush_count}),
                (TaskType.COGNITIVE_CONSOLIDATION, {"message_count": self._flush_count}),
            ):
                if self._registry is not None and not self._registry.has_workflow(task_type):
                    log.debug("memory_flush_task_skipped", user_id=user_id, task_type=task_type.value)
                    continue
                await self._task_service.create_task(user_id, task_type, input_data)
        except Exception as e:
            log.error(
                "memory_flush_check_failed",
                user_id=user_id,
                error_type=type(e).__name__,
                error=str(e),
            )
