"""apps/worker 测试配置"""

from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from taskweave.core.models import JobContext
from taskweave.core.queue import SqliteQueue
from taskweave.core.store import StoreGroup, open_connection
from taskweave.worker.registry import WorkflowRegistry
from taskweave.worker.services.task_service import TaskService

QUEUE = "agent-tasks"


@pytest_asyncio.fixture
async def stores(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    conn = await open_connection(str(tmp_path / "worker_test.db"))
    group = StoreGroup(conn)
    yield group
    await group.close()


@pytest_asyncio.fixture
async def queue(stores: StoreGroup) -> SqliteQueue:
    return SqliteQueue(stores.conn)


@pytest.fixture
def notifier() -> AsyncMock:
    """记录 emit_to_user 调用的通知器"""
    mock = AsyncMock()
    mock.emit_to_user = AsyncMock()
    return mock


@pytest.fixture
def registry() -> WorkflowRegistry:
    return WorkflowRegistry()


@pytest_asyncio.fixture
async def task_service(stores: StoreGroup, queue: SqliteQueue, notifier: AsyncMock) -> TaskService:
    return TaskService(
        task_store=stores.task_store,
        queue=queue,
        queue_name=QUEUE,
        notifier=notifier,
    )


def _job_for(task_id: str, attempt: int = 1, max_attempts: int = 3) -> JobContext:
    return JobContext(
        job_id=f"job-{task_id}-{attempt}",
        queue_name=QUEUE,
        name="TASK",
        payload={"task_id": task_id},
        attempt=attempt,
        max_attempts=max_attempts,
    )


@pytest.fixture
def job_for():
    """按 task_id 构造 JobContext"""
    return _job_for
