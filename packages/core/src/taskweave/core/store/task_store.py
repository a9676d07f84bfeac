"""TaskStore SQLite 实现

Task 记录以 task_id 为键；支持按 id 查询，
以及按 {user_id, status, type, created_at} 组合查询（幂等检查/列表）。
状态更新是条件更新：只有当前状态匹配 from_status 时才生效。
"""

import json
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from ..models.enums import InvalidTransitionError, TaskStatus, TaskType, validate_transition
from ..models.task import Task
from .transaction import write_transaction


def _ts(value: datetime | None) -> str | None:
    """统一转 UTC 并固定格式，保证字典序与时间序一致"""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds")


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        async with write_transaction(self._conn):
            await self._conn.execute(
                """
                INSERT INTO tasks (task_id, user_id, type, status, input_data,
                                   output_data, error, created_at, updated_at,
                                   started_at, completed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.task_id,
                    task.user_id,
                    task.type.value,
                    task.status.value,
                    json.dumps(task.input_data, ensure_ascii=False, default=str),
                    self._dump_output(task.output_data),
                    task.error,
                    _ts(task.created_at),
                    _ts(task.updated_at),
                    _ts(task.started_at),
                    _ts(task.completed_at),
                ),
            )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        user_id: str | None = None,
        status: TaskStatus | None = None,
        task_type: TaskType | None = None,
        created_after: datetime | None = None,
        limit: int | None = None,
    ) -> list[Task]:
        """按组合条件查询任务，按 created_at 倒序"""
        clauses: list[str] = []
        params: list[Any] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(TaskStatus(status).value)
        if task_type is not None:
            clauses.append("type = ?")
            params.append(TaskType(task_type).value)
        if created_after is not None:
            clauses.append("created_at >= ?")
            params.append(_ts(created_after))

        sql = "SELECT * FROM tasks"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY created_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def transition_task(
        self,
        task_id: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        now: datetime,
        output_data: Any = None,
        error: str | None = None,
    ) -> bool:
        """条件状态流转

        - PENDING -> RUNNING 写入 started_at（仅首次）
        - 进入终态写入 completed_at
        - WHERE status = from_status 保证并发下只有一个写者生效

        Returns:
            True 如果本次更新生效；False 表示当前状态已不是 from_status

        Raises:
            InvalidTransitionError: 流转不合法
        """
        if not validate_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

        started_at = _ts(now) if to_status == TaskStatus.RUNNING else None
        completed_at = (
            _ts(now) if to_status in (TaskStatus.COMPLETED, TaskStatus.FAILED) else None
        )
        async with write_transaction(self._conn):
            cursor = await self._conn.execute(
                """
                UPDATE tasks
                SET status = ?, updated_at = ?,
                    output_data = ?, error = ?,
                    started_at = COALESCE(started_at, ?),
                    completed_at = COALESCE(?, completed_at)
                WHERE task_id = ? AND status = ?
                """,
                (
                    to_status.value,
                    _ts(now),
                    self._dump_output(output_data),
                    error,
                    started_at,
                    completed_at,
                    task_id,
                    from_status.value,
                ),
            )
            return cursor.rowcount == 1

    async def list_stale(self, status: TaskStatus, before: datetime) -> list[Task]:
        """查询卡在某状态过久的任务

        RUNNING 以 started_at 为准，其余状态以 created_at 为准。
        """
        column = "started_at" if status == TaskStatus.RUNNING else "created_at"
        cursor = await self._conn.execute(
            f"SELECT * FROM tasks WHERE status = ? AND {column} < ? ORDER BY {column} ASC",
            (TaskStatus(status).value, _ts(before)),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    @staticmethod
    def _dump_output(output_data: Any) -> str | None:
        if output_data is None:
            return None
        return json.dumps(output_data, ensure_ascii=False, default=str)

    @staticmethod
    def _parse_ts(value: str | None) -> datetime | None:
        return datetime.fromisoformat(value) if value else None

    @classmethod
    def _row_to_task(cls, row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row["task_id"],
            user_id=row["user_id"],
            type=row["type"],
            status=row["status"],
            input_data=json.loads(row["input_data"]) if row["input_data"] else {},
            output_data=json.loads(row["output_data"]) if row["output_data"] else None,
            error=row["error"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            started_at=cls._parse_ts(row["started_at"]),
            completed_at=cls._parse_ts(row["completed_at"]),
        )
