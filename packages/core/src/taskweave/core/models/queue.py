"""Queue Domain Model -- 持久队列消息、重试策略、Worker 参数

队列消息是引用 Task 的临时信封：从入队存在到确认/进入死信。
处理过程中持有租约（lock），必须持续续约。
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


class JobStatus(StrEnum):
    """队列消息状态"""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    # 死信：重试耗尽或不可恢复，保留原地供排查
    DEAD = "dead"


class RetryPolicy(BaseModel):
    """显式重试策略（测试可见）"""

    max_attempts: int = Field(default=3, ge=1, description="最大尝试次数（含首次）")
    backoff: Literal["exponential", "fixed"] = Field(default="exponential")
    delay_ms: int = Field(default=1000, ge=0, description="退避基础延迟（毫秒）")
    max_delay_ms: int = Field(default=15 * 60 * 1000, ge=0, description="单次退避上限（毫秒）")

    def next_delay_ms(self, attempts_made: int) -> int:
        """计算第 attempts_made 次失败后的重试延迟"""
        if self.backoff == "fixed":
            return min(self.delay_ms, self.max_delay_ms)
        return min(self.delay_ms * (2 ** max(attempts_made - 1, 0)), self.max_delay_ms)


class WorkerOptions(BaseModel):
    """registerWorker 选项"""

    concurrency: int = Field(default=1, ge=1, description="单进程同时处理的消息数")
    lease_duration_ms: int = Field(default=300_000, ge=1, description="租约时长（毫秒）")
    stalled_check_interval_ms: int = Field(
        default=60_000,
        ge=1,
        description="卡死检测间隔（毫秒）",
    )
    poll_interval_ms: int = Field(default=500, ge=1, description="空闲轮询间隔（毫秒）")
    max_stalled_count: int = Field(
        default=1,
        ge=0,
        description="允许的卡死重投次数，超过后进入死信",
    )


class QueueJob(BaseModel):
    """持久队列中的一条消息"""

    job_id: str = Field(description="唯一标识，ULID 格式")
    queue_name: str
    name: str = Field(description="消息名（任务类型）")
    payload: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = Field(default=JobStatus.WAITING)
    attempts_made: int = Field(default=0, ge=0, description="已失败的尝试次数")
    max_attempts: int = Field(default=3, ge=1)
    stalled_count: int = Field(default=0, ge=0)
    available_at: int = Field(description="可被领取的 epoch 毫秒")
    locked_by: str | None = None
    lock_expires_at: int | None = Field(default=None, description="租约到期 epoch 毫秒")
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime
    finished_at: datetime | None = None


class JobContext(BaseModel):
    """交给 handler 的消息上下文"""

    job_id: str
    queue_name: str
    name: str
    payload: dict[str, Any] = Field(default_factory=dict)
    attempt: int = Field(ge=1, description="本次是第几次尝试")
    max_attempts: int = Field(ge=1)

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts
