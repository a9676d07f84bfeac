"""SqliteQueue -- 基于 SQLite 的持久任务队列

至少一次投递：
- 领取（claim）是条件更新：候选行仍为 waiting 时才置为 active 并加租约
- 处理期间持续续约；租约过期的 active 消息由卡死检测重新入队
- 失败按 RetryPolicy 退避重试，重试耗尽或不可恢复则进入死信（dead）

时间字段 available_at / lock_expires_at 为 epoch 毫秒。
"""

import json
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog
from ulid import ULID

from ..models.queue import JobStatus, QueueJob, RetryPolicy
from ..store.transaction import write_transaction
from .errors import LeaseLostError

log = structlog.get_logger()

STALLED_LIMIT_ERROR = "job stalled more than allowable limit"

# 并发领取冲突时的最大重试次数
_CLAIM_RETRIES = 3


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds")


class SqliteQueue:
    """持久队列（多个命名队列共享一张表）"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """
        Args:
            conn: 共享的 aiosqlite 连接
            clock: 返回 epoch 毫秒的时钟，测试可注入
        """
        self._conn = conn
        self._clock = clock or _epoch_ms

    def now_ms(self) -> int:
        return self._clock()

    async def enqueue(
        self,
        queue_name: str,
        name: str,
        payload: dict[str, Any],
        *,
        retry_policy: RetryPolicy | None = None,
        delay_ms: int = 0,
    ) -> str:
        """投递消息

        Args:
            queue_name: 队列名称
            name: 消息名（任务类型）
            payload: 消息体，如 {"task_id": ...}
            retry_policy: 重试策略，默认 RetryPolicy()
            delay_ms: 延迟可见时间

        Returns:
            job_id

        Raises:
            Exception: 写入失败原样抛出，由生产者处理
        """
        policy = retry_policy or RetryPolicy()
        job_id = str(ULID())
        now_iso = _now_iso()
        async with write_transaction(self._conn):
            await self._conn.execute(
                """
                INSERT INTO queue_jobs (job_id, queue_name, name, payload, status,
                                        attempts_made, max_attempts, backoff,
                                        stalled_count, available_at,
                                        created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?, 0, ?, ?, ?)
                """,
                (
                    job_id,
                    queue_name,
                    name,
                    json.dumps(payload, ensure_ascii=False, default=str),
                    JobStatus.WAITING.value,
                    policy.max_attempts,
                    policy.model_dump_json(),
                    self.now_ms() + delay_ms,
                    now_iso,
                    now_iso,
                ),
            )
        log.debug("queue_job_enqueued", queue=queue_name, job_id=job_id, job_name=name)
        return job_id

    async def claim(
        self,
        queue_name: str,
        worker_id: str,
        lease_duration_ms: int,
    ) -> QueueJob | None:
        """领取下一条可处理消息并加租约

        Returns:
            领取到的消息；队列为空返回 None
        """
        for _ in range(_CLAIM_RETRIES):
            now = self.now_ms()
            cursor = await self._conn.execute(
                """
                SELECT job_id FROM queue_jobs
                WHERE queue_name = ? AND status = ? AND available_at <= ?
                ORDER BY available_at ASC, job_id ASC
                LIMIT 1
                """,
                (queue_name, JobStatus.WAITING.value, now),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            job_id = row["job_id"]
            async with write_transaction(self._conn):
                result = await self._conn.execute(
                    """
                    UPDATE queue_jobs
                    SET status = ?, locked_by = ?, lock_expires_at = ?, updated_at = ?
                    WHERE job_id = ? AND status = ?
                    """,
                    (
                        JobStatus.ACTIVE.value,
                        worker_id,
                        now + lease_duration_ms,
                        _now_iso(),
                        job_id,
                        JobStatus.WAITING.value,
                    ),
                )
                claimed = result.rowcount == 1
            if claimed:
                return await self.get_job(job_id)
            # 被其他 worker 抢先，换下一条
        return None

    async def extend_lease(self, job_id: str, worker_id: str, lease_duration_ms: int) -> None:
        """续约

        Raises:
            LeaseLostError: 消息已不由该 worker 持有
        """
        async with write_transaction(self._conn):
            result = await self._conn.execute(
                """
                UPDATE queue_jobs
                SET lock_expires_at = ?, updated_at = ?
                WHERE job_id = ? AND status = ? AND locked_by = ?
                """,
                (
                    self.now_ms() + lease_duration_ms,
                    _now_iso(),
                    job_id,
                    JobStatus.ACTIVE.value,
                    worker_id,
                ),
            )
            renewed = result.rowcount == 1
        if not renewed:
            raise LeaseLostError(job_id, worker_id)

    async def complete(self, job_id: str, worker_id: str) -> None:
        """确认消息处理成功

        Raises:
            LeaseLostError: 租约已丢失，消息会被重新投递
        """
        now_iso = _now_iso()
        async with write_transaction(self._conn):
            result = await self._conn.execute(
                """
                UPDATE queue_jobs
                SET status = ?, locked_by = NULL, lock_expires_at = NULL,
                    updated_at = ?, finished_at = ?
                WHERE job_id = ? AND status = ? AND locked_by = ?
                """,
                (
                    JobStatus.COMPLETED.value,
                    now_iso,
                    now_iso,
                    job_id,
                    JobStatus.ACTIVE.value,
                    worker_id,
                ),
            )
            done = result.rowcount == 1
        if not done:
            raise LeaseLostError(job_id, worker_id)

    async def fail(
        self,
        job_id: str,
        worker_id: str,
        error: str,
        *,
        unrecoverable: bool = False,
    ) -> JobStatus:
        """记录一次失败：按策略退避重试，或进入死信

        Returns:
            失败后的消息状态（WAITING 表示将重试，DEAD 表示进入死信）

        Raises:
            LeaseLostError: 租约已丢失
        """
        job = await self.get_job(job_id)
        if job is None or job.status != JobStatus.ACTIVE or job.locked_by != worker_id:
            raise LeaseLostError(job_id, worker_id)

        policy = await self._get_policy(job_id)
        attempts_made = job.attempts_made + 1
        now_iso = _now_iso()

        if unrecoverable or attempts_made >= job.max_attempts:
            new_status = JobStatus.DEAD
            available_at = job.available_at
            finished_at: str | None = now_iso
        else:
            new_status = JobStatus.WAITING
            available_at = self.now_ms() + policy.next_delay_ms(attempts_made)
            finished_at = None

        async with write_transaction(self._conn):
            result = await self._conn.execute(
                """
                UPDATE queue_jobs
                SET status = ?, attempts_made = ?, available_at = ?,
                    locked_by = NULL, lock_expires_at = NULL,
                    last_error = ?, updated_at = ?, finished_at = ?
                WHERE job_id = ? AND status = ? AND locked_by = ?
                """,
                (
                    new_status.value,
                    attempts_made,
                    available_at,
                    error,
                    now_iso,
                    finished_at,
                    job_id,
                    JobStatus.ACTIVE.value,
                    worker_id,
                ),
            )
            updated = result.rowcount == 1
        if not updated:
            raise LeaseLostError(job_id, worker_id)

        if new_status == JobStatus.DEAD:
            log.warning(
                "queue_job_dead_lettered",
                job_id=job_id,
                job_name=job.name,
                attempts_made=attempts_made,
                unrecoverable=unrecoverable,
                error=error,
            )
        return new_status

    async def requeue_stalled(self, queue_name: str, max_stalled_count: int) -> list[str]:
        """卡死检测：回收租约过期的 active 消息

        卡死次数未超限的消息重新入队；超限的进入死信。

        Returns:
            本轮处理过的 job_id 列表
        """
        now = self.now_ms()
        cursor = await self._conn.execute(
            """
            SELECT job_id, stalled_count, lock_expires_at FROM queue_jobs
            WHERE queue_name = ? AND status = ? AND lock_expires_at < ?
            ORDER BY lock_expires_at ASC
            """,
            (queue_name, JobStatus.ACTIVE.value, now),
        )
        rows = await cursor.fetchall()

        handled: list[str] = []
        for row in rows:
            job_id = row["job_id"]
            stalled_count = row["stalled_count"] + 1
            now_iso = _now_iso()
            if stalled_count > max_stalled_count:
                new_status = JobStatus.DEAD
                last_error: str | None = STALLED_LIMIT_ERROR
                finished_at: str | None = now_iso
            else:
                new_status = JobStatus.WAITING
                last_error = None
                finished_at = None

            async with write_transaction(self._conn):
                # lock_expires_at 作为版本号，期间被续约则放弃
                result = await self._conn.execute(
                    """
                    UPDATE queue_jobs
                    SET status = ?, stalled_count = ?, available_at = ?,
                        locked_by = NULL, lock_expires_at = NULL,
                        last_error = COALESCE(?, last_error),
                        updated_at = ?, finished_at = ?
                    WHERE job_id = ? AND status = ? AND lock_expires_at = ?
                    """,
                    (
                        new_status.value,
                        stalled_count,
                        now,
                        last_error,
                        now_iso,
                        finished_at,
                        job_id,
                        JobStatus.ACTIVE.value,
                        row["lock_expires_at"],
                    ),
                )
                changed = result.rowcount == 1
            if not changed:
                continue

            handled.append(job_id)
            if new_status == JobStatus.DEAD:
                log.warning(
                    "queue_job_stalled_dead_lettered",
                    job_id=job_id,
                    stalled_count=stalled_count,
                )
            else:
                log.info("queue_job_stalled_requeued", job_id=job_id, stalled_count=stalled_count)
        return handled

    async def get_job(self, job_id: str) -> QueueJob | None:
        """根据 job_id 查询消息"""
        cursor = await self._conn.execute(
            "SELECT * FROM queue_jobs WHERE job_id = ?",
            (job_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_job(row)

    async def job_counts(self, queue_name: str) -> dict[str, int]:
        """按状态统计消息数（缺失的状态计 0）"""
        counts = {status.value: 0 for status in JobStatus}
        cursor = await self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM queue_jobs WHERE queue_name = ? GROUP BY status",
            (queue_name,),
        )
        for row in await cursor.fetchall():
            counts[row["status"]] = row["n"]
        return counts

    async def list_dead_letters(self, queue_name: str, limit: int = 100) -> list[QueueJob]:
        """列出死信消息（最近进入的在前）"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM queue_jobs
            WHERE queue_name = ? AND status = ?
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (queue_name, JobStatus.DEAD.value, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_job(row) for row in rows]

    async def retry_dead(self, job_id: str) -> bool:
        """将死信消息重新入队（重置尝试计数）

        Returns:
            True 如果消息存在且处于死信状态
        """
        async with write_transaction(self._conn):
            result = await self._conn.execute(
                """
                UPDATE queue_jobs
                SET status = ?, attempts_made = 0, stalled_count = 0,
                    available_at = ?, finished_at = NULL, updated_at = ?
                WHERE job_id = ? AND status = ?
                """,
                (
                    JobStatus.WAITING.value,
                    self.now_ms(),
                    _now_iso(),
                    job_id,
                    JobStatus.DEAD.value,
                ),
            )
            retried = result.rowcount == 1
        if retried:
            log.info("queue_job_retried_from_dead", job_id=job_id)
        return retried

    async def has_live_job(self, queue_name: str, task_id: str) -> bool:
        """是否存在引用该 task_id 的未终结消息（waiting/active）"""
        cursor = await self._conn.execute(
            """
            SELECT 1 FROM queue_jobs
            WHERE queue_name = ? AND status IN (?, ?)
              AND json_extract(payload, '$.task_id') = ?
            LIMIT 1
            """,
            (queue_name, JobStatus.WAITING.value, JobStatus.ACTIVE.value, task_id),
        )
        return await cursor.fetchone() is not None

    async def _get_policy(self, job_id: str) -> RetryPolicy:
        cursor = await self._conn.execute(
            "SELECT backoff FROM queue_jobs WHERE job_id = ?",
            (job_id,),
        )
        row = await cursor.fetchone()
        if row is None or not row["backoff"] or row["backoff"] == "{}":
            return RetryPolicy()
        return RetryPolicy.model_validate_json(row["backoff"])

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> QueueJob:
        """将数据库行转换为 QueueJob 模型"""
        return QueueJob(
            job_id=row["job_id"],
            queue_name=row["queue_name"],
            name=row["name"],
            payload=json.loads(row["payload"]) if row["payload"] else {},
            status=row["status"],
            attempts_made=row["attempts_made"],
            max_attempts=row["max_attempts"],
            stalled_count=row["stalled_count"],
            available_at=row["available_at"],
            locked_by=row["locked_by"],
            lock_expires_at=row["lock_expires_at"],
            last_error=row["last_error"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            finished_at=(
                datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None
            ),
        )
