"""AgentChatService 单元测试"""

from unittest.mock import AsyncMock

from taskweave.core.models import ChatRole, TaskType
from taskweave.provider import ToolCallResponse
from taskweave.worker.chat.loop import UNSURE_REPLY, ToolCallingChatLoop
from taskweave.worker.chat.service import AgentChatService
from taskweave.worker.chat.tools import ToolRegistry
from taskweave.worker.workflows.builtin import memory_flush_workflow


def _service(stores, task_service, *responses, flush_threshold=30, flush_count=20, registry=None):
    inference = AsyncMock()
    inference.generate_with_tools = AsyncMock(side_effect=list(responses))
    loop = ToolCallingChatLoop(inference, ToolRegistry(), stores.chat_store)
    return AgentChatService(
        stores.chat_store,
        loop,
        task_service,
        flush_threshold=flush_threshold,
        flush_count=flush_count,
        registry=registry,
    )


class TestChat:
    async def test_persists_both_turns(self, stores, task_service):
        service = _service(stores, task_service, ToolCallResponse(text="Hello there"))

        reply = await service.chat("user-1", "hi")

        assert reply == "Hello there"
        history = await service.get_chat_history("user-1")
        assert [(t.role, t.content) for t in history] == [
            (ChatRole.USER, "hi"),
            (ChatRole.AGENT, "Hello there"),
        ]

    async def test_fallback_reply_not_persisted(self, stores, task_service):
        service = _service(stores, task_service, ToolCallResponse())

        assert await service.chat("user-1", "hi") == UNSURE_REPLY
        history = await service.get_chat_history("user-1")
        assert [t.role for t in history] == [ChatRole.USER]

    async def test_clear_history(self, stores, task_service):
        service = _service(stores, task_service, ToolCallResponse(text="ok"))
        await service.chat("user-1", "hi")

        await service.clear_history("user-1")

        assert await service.get_chat_history("user-1") == []


class TestMemoryFlush:
    async def test_below_threshold_no_tasks(self, stores, task_service):
        service = _service(stores, task_service, ToolCallResponse(text="ok"), flush_threshold=4)
        await service.chat("user-1", "hi")
        assert await task_service.list_user_tasks("user-1") == []

    async def test_threshold_creates_flush_tasks(self, stores, task_service):
        service = _service(
            stores,
            task_service,
            ToolCallResponse(text="one"),
            ToolCallResponse(text="two"),
            flush_threshold=4,
            flush_count=3,
        )
        await service.chat("user-1", "first")
        await service.chat("user-1", "second")

        tasks = await task_service.list_user_tasks("user-1")
        by_type = {t.type: t for t in tasks}
        assert set(by_type) == {TaskType.MEMORY_FLUSH, TaskType.COGNITIVE_CONSOLIDATION}
        assert by_type[TaskType.MEMORY_FLUSH].input_data == {"count": 3}
        assert by_type[TaskType.COGNITIVE_CONSOLIDATION].input_data == {"message_count": 3}

    async def test_flush_failure_swallowed(self, stores):
        task_service = AsyncMock()
        task_service.create_task = AsyncMock(side_effect=RuntimeError("queue down"))
        service = _service(stores, task_service, ToolCallResponse(text="ok"), flush_threshold=1)

        assert await service.chat("user-1", "hi") == "ok"
        task_service.create_task.assert_awaited_once()

    async def test_skips_types_without_workflow(self, stores, task_service, registry):
        registry.register(TaskType.MEMORY_FLUSH, memory_flush_workflow(stores.chat_store))
        service = _service(
            stores,
            task_service,
            ToolCallResponse(text="ok"),
            flush_threshold=2,
            flush_count=2,
            registry=registry,
        )
        await service.chat("user-1", "hi")

        tasks = await task_service.list_user_tasks("user-1")
        assert [t.type for t in tasks] == [TaskType.MEMORY_FLUSH]

    async def test_no_tasks_when_nothing_registered(self, stores, task_service, registry):
        service = _service(
            stores,
            task_service,
            ToolCallResponse(text="ok"),
            flush_threshold=2,
            registry=registry,
        )
        await service.chat("user-1", "hi")
        assert await task_service.list_user_tasks("user-1") == []
