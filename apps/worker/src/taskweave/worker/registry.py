"""WorkflowRegistry -- 任务类型 -> workflow 执行器

进程级映射，启动时一次性注册，freeze() 后只读。
注册时把类型字符串收敛为 TaskType，未知类型在注册阶段即被拒绝。
"""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from taskweave.core.models import Task, TaskType, WorkflowResult

from .errors import RegistryFrozenError, WorkflowAlreadyRegisteredError, WorkflowNotRegisteredError

log = structlog.get_logger()

# 执行器：返回 WorkflowResult；返回其他值视为 completed(result=值)
WorkflowExecutor = Callable[[Task], Awaitable[WorkflowResult | Any]]


class WorkflowRegistry:
    """workflow 注册表"""

    def __init__(self) -> None:
        self._workflows: dict[TaskType, WorkflowExecutor] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, task_type: TaskType | str, execute: WorkflowExecutor) -> None:
        """注册 workflow

        Raises:
            ValueError: 未知任务类型
            RegistryFrozenError: 注册表已冻结
            WorkflowAlreadyRegisteredError: 该类型已注册
        """
        task_type = TaskType(task_type)
        if self._frozen:
            raise RegistryFrozenError(task_type.value)
        if task_type in self._workflows:
            raise WorkflowAlreadyRegisteredError(task_type.value)
        self._workflows[task_type] = execute
        log.debug("workflow_registered", task_type=task_type.value)

    def get_workflow(self, task_type: TaskType | str) -> WorkflowExecutor:
        """查找 workflow

        Raises:
            WorkflowNotRegisteredError: 该类型未注册
        """
        try:
            return self._workflows[TaskType(task_type)]
        except (KeyError, ValueError):
            raise WorkflowNotRegisteredError(str(task_type)) from None

    def has_workflow(self, task_type: TaskType | str) -> bool:
        try:
            return TaskType(task_type) in self._workflows
        except ValueError:
            return False

    def missing_types(self) -> set[TaskType]:
        """尚未注册 workflow 的任务类型（用于完备性检查）"""
        return set(TaskType) - set(self._workflows)

    def registered_types(self) -> set[TaskType]:
        return set(self._workflows)

    def freeze(self) -> None:
        """冻结注册表，此后只读"""
        self._frozen = True
        log.info(
            "workflow_registry_frozen",
            registered=len(self._workflows),
            missing=sorted(t.value for t in self.missing_types()),
        )
