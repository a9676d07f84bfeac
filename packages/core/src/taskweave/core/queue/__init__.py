"""TaskWeave Core Queue -- SQLite 持久队列与消费者"""

from .errors import LeaseLostError, QueueError, UnrecoverableError
from .sqlite_queue import STALLED_LIMIT_ERROR, SqliteQueue
from .worker import JobHandler, QueueWorker

__all__ = [
    "JobHandler",
    "LeaseLostError",
    "QueueError",
    "QueueWorker",
    "STALLED_LIMIT_ERROR",
    "SqliteQueue",
    "UnrecoverableError",
]
