"""枚举定义 -- Task 状态机、任务类型、事件流事件类型、对话角色

包含 TaskStatus 状态机、TaskType 工作流类型、StreamEventType 事件流词表，
以及 VALID_TRANSITIONS 合法流转映射和 TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    PENDING = "PENDING"
    RUNNING = "RUNNING"

    # 终态
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# 合法状态流转
# PENDING -> FAILED 仅用于生产者入队失败和自愈巡检，worker 路径必经 RUNNING
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.FAILED},
    TaskStatus.RUNNING: {TaskStatus.COMPLETED, TaskStatus.FAILED},
    # 终态不可再流转
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
}


class TaskType(StrEnum):
    """Agent 任务类型（封闭枚举），每个类型对应一个 workflow"""

    DAILY_REFLECTION = "DAILY_REFLECTION"
    ENTRY_TAGGING = "ENTRY_TAGGING"
    ENTRY_ENRICHMENT = "ENTRY_ENRICHMENT"
    TAGGING = "TAGGING"
    ENTITY_EXTRACTION = "ENTITY_EXTRACTION"
    ENTRY_EMBEDDING = "ENTRY_EMBEDDING"
    EMBED_ENTRY = "EMBED_ENTRY"
    LINKEDIN_PROFILE_PARSE = "LINKEDIN_PROFILE_PARSE"
    BRAIN_DUMP = "BRAIN_DUMP"
    CHECKLIST_CREATE = "CHECKLIST_CREATE"
    REMINDER_CREATE = "REMINDER_CREATE"
    REMINDER_UPDATE = "REMINDER_UPDATE"
    GOAL_CREATE = "GOAL_CREATE"
    DAILY_BRIEFING = "DAILY_BRIEFING"
    KNOWLEDGE_QUERY = "KNOWLEDGE_QUERY"
    WEB_ACTIVITY_SUMMARY = "WEB_ACTIVITY_SUMMARY"
    INTENT_PROCESSING = "INTENT_PROCESSING"
    SYNC = "SYNC"
    PERSONA_SYNTHESIS = "PERSONA_SYNTHESIS"
    MEMORY_FLUSH = "MEMORY_FLUSH"
    ENTITY_CONSOLIDATION = "ENTITY_CONSOLIDATION"
    RETROACTIVE_LINKING = "RETROACTIVE_LINKING"
    COGNITIVE_CONSOLIDATION = "COGNITIVE_CONSOLIDATION"
    WEEKLY_ANALYSIS = "WEEKLY_ANALYSIS"
    MONTHLY_ANALYSIS = "MONTHLY_ANALYSIS"


class WorkflowStatus(StrEnum):
    """Workflow 执行结果状态"""

    COMPLETED = "completed"
    FAILED = "failed"


class StreamEventType(StrEnum):
    """事件流事件类型 -- 比 TaskType 词表更大"""

    # 1. 系统与生命周期
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    HEARTBEAT = "heartbeat"

    # 2. 意图与动作
    TASK_CREATED = "task_created"
    TASK_COMPLETED = "task_completed"
    TASK_RESCHEDULED = "task_rescheduled"
    TASK_ABANDONED = "task_abandoned"
    GOAL_PROGRESS = "goal_progress"
    INTENT_PROCESS_REQUESTED = "intent_process_requested"

    # 3. 上下文信号
    FOCUS_ENTERED = "focus_entered"
    DISTRACTION_DETECTED = "distraction_detected"
    LOCATION_CHANGED = "location_changed"
    MOOD_LOGGED = "mood_logged"

    # 4. 交互
    MESSAGE_SENT = "message_sent"
    CLARIFICATION_NEEDED = "clarification_needed"


class ChatRole(StrEnum):
    """对话轮次角色"""

    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"


class InvalidTransitionError(ValueError):
    """非法状态流转"""

    def __init__(self, from_status: TaskStatus, to_status: TaskStatus) -> None:
        super().__init__(f"Cannot transition task from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
