"""Worker 异常体系 -- workflow 注册与执行"""

from taskweave.core.queue.errors import UnrecoverableError


class WorkflowError(Exception):
    """workflow 相关基础异常"""


class WorkflowNotRegisteredError(WorkflowError):
    """任务类型没有注册 workflow"""

    def __init__(self, task_type: str) -> None:
        super().__init__(f"No workflow registered for task type: {task_type}")
        self.task_type = task_type


class WorkflowAlreadyRegisteredError(WorkflowError):
    """重复注册同一任务类型"""

    def __init__(self, task_type: str) -> None:
        super().__init__(f"Workflow already registered for task type: {task_type}")
        self.task_type = task_type


class RegistryFrozenError(WorkflowError):
    """注册表已冻结（启动完成后不可再注册）"""

    def __init__(self, task_type: str) -> None:
        super().__init__(f"Workflow registry is frozen; cannot register {task_type}")
        self.task_type = task_type


class WorkflowFailedError(UnrecoverableError, WorkflowError):
    """workflow 返回业务失败 -- 不重试"""

    def __init__(self, task_id: str, error: str) -> None:
        super().__init__(error)
        self.task_id = task_id
        self.error = error
