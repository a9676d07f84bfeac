"""TaskWeave Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .chat import ChatTurn
from .enums import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ChatRole,
    InvalidTransitionError,
    StreamEventType,
    TaskStatus,
    TaskType,
    WorkflowStatus,
    validate_transition,
)
from .queue import JobContext, JobStatus, QueueJob, RetryPolicy, WorkerOptions
from .stream import (
    AccessContext,
    DistractionDetectedPayload,
    FocusEnteredPayload,
    PendingEntry,
    PendingSummary,
    StreamEntry,
    StreamEvent,
    TaskRescheduledPayload,
)
from .task import Task, WorkflowResult

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskType",
    "WorkflowStatus",
    "StreamEventType",
    "ChatRole",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "InvalidTransitionError",
    "validate_transition",
    # Task
    "Task",
    "WorkflowResult",
    # Queue
    "QueueJob",
    "JobStatus",
    "JobContext",
    "RetryPolicy",
    "WorkerOptions",
    # Stream
    "AccessContext",
    "StreamEvent",
    "StreamEntry",
    "PendingEntry",
    "PendingSummary",
    "TaskRescheduledPayload",
    "FocusEnteredPayload",
    "DistractionDetectedPayload",
    # Chat
    "ChatTurn",
]
