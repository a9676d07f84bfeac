"""packages/core 测试配置 -- 核心层 fixture"""

import sys
from collections.abc import AsyncGenerator, Generator
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
import structlog
from taskweave.core.models import Task, TaskStatus, TaskType
from taskweave.core.queue import SqliteQueue
from taskweave.core.store import StoreGroup, open_connection
from taskweave.core.stream import EventStream


class FakeClock:
    """可手动推进的 epoch 毫秒时钟"""

    def __init__(self, start_ms: int = 1_700_000_000_000) -> None:
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def _structlog_to_stderr() -> Generator[None, None, None]:
    """structlog 日志输出到 stderr，避免混入 CLI 的 stdout 捕获"""
    saved = structlog.get_config()
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))
    yield
    structlog.configure(**saved)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def core_db(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """核心层已初始化数据库连接"""
    conn = await open_connection(str(tmp_path / "core_test.db"))
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def stores(core_db: aiosqlite.Connection) -> StoreGroup:
    return StoreGroup(core_db)


@pytest_asyncio.fixture
async def queue(core_db: aiosqlite.Connection, clock: FakeClock) -> SqliteQueue:
    return SqliteQueue(core_db, clock=clock)


@pytest_asyncio.fixture
async def stream(core_db: aiosqlite.Connection, clock: FakeClock) -> EventStream:
    return EventStream(core_db, stream_key="test:events", clock=clock)


def _make_task(
    task_id: str = "task-001",
    user_id: str = "user-1",
    task_type: TaskType = TaskType.ENTRY_TAGGING,
    status: TaskStatus = TaskStatus.PENDING,
    created_at: datetime | None = None,
    **kwargs,
) -> Task:
    now = created_at or datetime.now(UTC)
    return Task(
        task_id=task_id,
        user_id=user_id,
        type=task_type,
        status=status,
        created_at=now,
        updated_at=now,
        **kwargs,
    )


@pytest.fixture
def make_task():
    """Task 构造器"""
    return _make_task
