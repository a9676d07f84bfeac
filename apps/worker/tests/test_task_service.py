"""TaskService 单元测试

覆盖：创建即入队、入队失败落 FAILED、按用户查询、幂等检查。
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

from taskweave.core.models import JobStatus, TaskStatus, TaskType
from taskweave.worker.services.notifier import AGENT_TASK_UPDATED
from taskweave.worker.services.task_service import ENQUEUE_FAILED_ERROR, TaskService

QUEUE = "agent-tasks"


class TestCreateTask:
    async def test_creates_pending_and_enqueues(self, task_service, stores, queue, notifier):
        task = await task_service.create_task("user-1", TaskType.ENTRY_TAGGING, {"entry_id": "e1"})

        assert task.status == TaskStatus.PENDING
        stored = await stores.task_store.get_task(task.task_id)
        assert stored.input_data == {"entry_id": "e1"}

        job = await queue.claim(QUEUE, "w1", 1000)
        assert job.name == "ENTRY_TAGGING"
        assert job.payload == {"task_id": task.task_id}
        assert job.status == JobStatus.ACTIVE
        notifier.emit_to_user.assert_not_awaited()

    async def test_accepts_string_type(self, task_service):
        task = await task_service.create_task("user-1", "GOAL_CREATE")
        assert task.type == TaskType.GOAL_CREATE

    async def test_enqueue_failure_marks_failed(self, stores, notifier):
        broken_queue = AsyncMock()
        broken_queue.enqueue = AsyncMock(side_effect=ConnectionError("queue unavailable"))
        service = TaskService(stores.task_store, broken_queue, QUEUE, notifier=notifier)

        task = await service.create_task("user-1", TaskType.DAILY_BRIEFING)

        assert task.status == TaskStatus.FAILED
        assert task.error == ENQUEUE_FAILED_ERROR
        stored = await stores.task_store.get_task(task.task_id)
        assert stored.status == TaskStatus.FAILED
        assert stored.error == "Failed to enqueue task"
        user_id, event, payload = notifier.emit_to_user.await_args.args
        assert (user_id, event, payload["status"]) == ("user-1", AGENT_TASK_UPDATED, "FAILED")


class TestQueries:
    async def test_get_task_scoped_to_user(self, task_service):
        task = await task_service.create_task("user-1", TaskType.SYNC)
        assert (await task_service.get_task(task.task_id)).task_id == task.task_id
        assert (await task_service.get_task(task.task_id, user_id="user-1")) is not None
        assert await task_service.get_task(task.task_id, user_id="user-2") is None
        assert await task_service.get_task("missing") is None

    async def test_list_user_tasks(self, task_service):
        await task_service.create_task("user-1", TaskType.SYNC)
        await task_service.create_task("user-2", TaskType.SYNC)
        tasks = await task_service.list_user_tasks("user-1")
        assert [t.user_id for t in tasks] == ["user-1"]

    async def test_find_recent(self, task_service, stores):
        task = await task_service.create_task("user-1", TaskType.DAILY_BRIEFING)

        found = await task_service.find_recent(
            "user-1",
            TaskType.DAILY_BRIEFING,
            statuses={TaskStatus.PENDING, TaskStatus.RUNNING},
            created_after=datetime.now(UTC) - timedelta(hours=1),
        )
        assert found.task_id == task.task_id

        assert (
            await task_service.find_recent(
                "user-1", TaskType.DAILY_BRIEFING, statuses={TaskStatus.COMPLETED}
            )
            is None
        )
        assert (
            await task_service.find_recent(
                "user-1",
                TaskType.DAILY_BRIEFING,
                created_after=datetime.now(UTC) + timedelta(hours=1),
            )
            is None
        )
