"""QueueWorker -- 队列消费者

从 SqliteQueue 领取消息并交给 handler 处理：
- 并发上限由 asyncio.Semaphore 控制
- 处理期间每 lease_duration_ms / 2 续约一次
- 周期性卡死检测，回收租约过期的消息
- handler 抛 UnrecoverableError 直接进入死信，其余异常按重试策略处理
- close() 停止领取并等待处理中的消息完成
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from ulid import ULID

from ..models.queue import JobContext, QueueJob, WorkerOptions
from .errors import LeaseLostError, UnrecoverableError
from .sqlite_queue import SqliteQueue

log = structlog.get_logger()

JobHandler = Callable[[JobContext], Awaitable[Any]]


def _error_text(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class QueueWorker:
    """单进程队列消费者"""

    def __init__(
        self,
        queue: SqliteQueue,
        queue_name: str,
        handler: JobHandler,
        options: WorkerOptions | None = None,
        worker_id: str | None = None,
    ) -> None:
        self._queue = queue
        self._queue_name = queue_name
        self._handler = handler
        self._options = options or WorkerOptions()
        self.worker_id = worker_id or f"worker-{ULID()}"

        self._slots = asyncio.Semaphore(self._options.concurrency)
        self._closing = asyncio.Event()
        self._in_flight: set[asyncio.Task] = set()
        self._loops: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._loops) and not self._closing.is_set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self) -> None:
        """启动领取循环与卡死检测循环"""
        if self._loops:
            return
        self._closing.clear()
        self._loops = [
            asyncio.create_task(self._claim_loop(), name=f"{self.worker_id}-claim"),
            asyncio.create_task(self._stalled_loop(), name=f"{self.worker_id}-stalled"),
        ]
        log.info(
            "queue_worker_started",
            queue=self._queue_name,
            worker_id=self.worker_id,
            concurrency=self._options.concurrency,
        )

    async def close(self, timeout_s: float | None = None) -> None:
        """优雅停机：停止领取，等待处理中的消息

        Args:
            timeout_s: 等待处理中消息的最长时间；超时后放弃等待，
                未完成的消息租约过期后由其他 worker 重新处理
        """
        self._closing.set()
        for task in self._loops:
            task.cancel()
        for task in self._loops:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._loops = []

        if self._in_flight:
            _, pending = await asyncio.wait(set(self._in_flight), timeout=timeout_s)
            if pending:
                log.warning(
                    "queue_worker_close_timeout",
                    queue=self._queue_name,
                    worker_id=self.worker_id,
                    pending=len(pending),
                )
        log.info("queue_worker_closed", queue=self._queue_name, worker_id=self.worker_id)

    async def process_next(self) -> bool:
        """领取并同步处理一条消息（不占用后台循环）

        Returns:
            True 如果处理了一条消息；队列为空返回 False
        """
        job = await self._queue.claim(
            self._queue_name,
            self.worker_id,
            self._options.lease_duration_ms,
        )
        if job is None:
            return False
        await self._run_job(job)
        return True

    async def check_stalled(self) -> list[str]:
        """执行一次卡死检测"""
        return await self._queue.requeue_stalled(
            self._queue_name,
            self._options.max_stalled_count,
        )

    async def _claim_loop(self) -> None:
        while not self._closing.is_set():
            await self._slots.acquire()
            try:
                job = await self._queue.claim(
                    self._queue_name,
                    self.worker_id,
                    self._options.lease_duration_ms,
                )
            except Exception as e:
                self._slots.release()
                log.error(
                    "queue_claim_failed",
                    queue=self._queue_name,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                await self._idle()
                continue

            if job is None:
                self._slots.release()
                await self._idle()
                continue

            task = asyncio.create_task(self._run_slot(job))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _stalled_loop(self) -> None:
        interval_s = self._options.stalled_check_interval_ms / 1000
        while not self._closing.is_set():
            try:
                await self.check_stalled()
            except Exception as e:
                log.error(
                    "queue_stalled_check_failed",
                    queue=self._queue_name,
                    error_type=type(e).__name__,
                    error=str(e),
                )
            await asyncio.sleep(interval_s)

    async def _idle(self) -> None:
        """空闲等待，停机信号可提前唤醒"""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                self._closing.wait(),
                timeout=self._options.poll_interval_ms / 1000,
            )

    async def _run_slot(self, job: QueueJob) -> None:
        try:
            await self._run_job(job)
        finally:
            self._slots.release()

    async def _run_job(self, job: QueueJob) -> None:
        ctx = JobContext(
            job_id=job.job_id,
            queue_name=job.queue_name,
            name=job.name,
            payload=job.payload,
            attempt=job.attempts_made + 1,
            max_attempts=job.max_attempts,
        )
        heartbeat = asyncio.create_task(self._heartbeat(job.job_id))
        try:
            await self._handler(ctx)
        except UnrecoverableError as e:
            await self._record_failure(job, _error_text(e), unrecoverable=True)
        except Exception as e:
            log.warning(
                "queue_job_failed",
                job_id=job.job_id,
                job_name=job.name,
                attempt=ctx.attempt,
                max_attempts=ctx.max_attempts,
                error_type=type(e).__name__,
                error=str(e),
            )
            await self._record_failure(job, _error_text(e), unrecoverable=False)
        else:
            try:
                await self._queue.complete(job.job_id, self.worker_id)
            except LeaseLostError:
                log.warning("queue_job_lease_lost_on_complete", job_id=job.job_id)
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat

    async def _record_failure(self, job: QueueJob, error: str, *, unrecoverable: bool) -> None:
        try:
            await self._queue.fail(
                job.job_id,
                self.worker_id,
                error,
                unrecoverable=unrecoverable,
            )
        except LeaseLostError:
            log.warning("queue_job_lease_lost_on_fail", job_id=job.job_id)

    async def _heartbeat(self, job_id: str) -> None:
        """持续续约，租约丢失后停止"""
        interval_s = self._options.lease_duration_ms / 2 / 1000
        while True:
            await asyncio.sleep(interval_s)
            try:
                await self._queue.extend_lease(
                    job_id,
                    self.worker_id,
                    self._options.lease_duration_ms,
                )
            except LeaseLostError:
                log.warning("queue_job_lease_lost", job_id=job_id, worker_id=self.worker_id)
                return
            except Exception as e:
                log.error(
                    "queue_lease_renew_failed",
                    job_id=job_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
