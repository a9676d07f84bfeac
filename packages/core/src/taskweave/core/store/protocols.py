"""Store Protocol 接口定义

定义 TaskStore、ChatMemoryStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from datetime import datetime
from typing import Any, Protocol

from ..models.chat import ChatTurn
from ..models.enums import ChatRole, TaskStatus, TaskType
from ..models.task import Task


class TaskStore(Protocol):
    """Task 记录存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks(
        self,
        user_id: str | None = None,
        status: TaskStatus | None = None,
        task_type: TaskType | None = None,
        created_after: datetime | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """按组合条件查询任务"""
        ...

    async def transition_task(
        self,
        task_id: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        now: datetime,
        output_data: Any = None,
        error: str | None = None,
    ) -> bool:
        """条件状态流转，返回是否生效"""
        ...

    async def list_stale(self, status: TaskStatus, before: datetime) -> list[Task]:
        """查询卡在某状态过久的任务"""
        ...


class ChatMemoryStore(Protocol):
    """对话短期记忆接口"""

    async def add_message(self, user_id: str, role: ChatRole, content: str) -> ChatTurn:
        """追加一轮对话"""
        ...

    async def get_history(self, user_id: str) -> list[ChatTurn]:
        """获取最近对话"""
        ...

    async def clear(self, user_id: str) -> None:
        """清空记忆"""
        ...

    async def remove_oldest(self, user_id: str, count: int) -> int:
        """删除最早的 count 轮，返回实际删除条数"""
        ...
