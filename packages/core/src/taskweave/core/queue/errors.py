"""Queue 异常体系"""


class QueueError(Exception):
    """Queue 基础异常"""


class UnrecoverableError(QueueError):
    """不可恢复错误 -- handler 抛出后消息直接进入死信，不再重试"""


class LeaseLostError(QueueError):
    """租约已丢失（过期后被卡死检测回收，或被其他 worker 领取）"""

    def __init__(self, job_id: str, worker_id: str) -> None:
        super().__init__(f"Lease lost for job {job_id} (worker={worker_id})")
        self.job_id = job_id
        self.worker_id = worker_id
