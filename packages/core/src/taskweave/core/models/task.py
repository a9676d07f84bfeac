"""Task Domain Model -- 异步工作单元

Task 由生产者创建（PENDING），只由 Worker Loop 推进状态，
引擎本身从不删除 Task（保留/清理属于外部关注点）。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .enums import TaskStatus, TaskType, WorkflowStatus


class Task(BaseModel):
    """Task 数据模型

    不变量：
    - output_data 仅在 COMPLETED 时设置，error 仅在 FAILED 时设置，二者互斥
    - started_at 只在 PENDING -> RUNNING 时写入一次
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    user_id: str = Field(description="所属用户 ID")
    type: TaskType = Field(description="任务类型，决定分派到哪个 workflow")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    input_data: dict[str, Any] = Field(default_factory=dict, description="workflow 输入")
    output_data: Any | None = Field(default=None, description="workflow 输出（仅 COMPLETED）")
    error: str | None = Field(default=None, description="失败原因（仅 FAILED）")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    started_at: datetime | None = Field(default=None, description="开始执行时间")
    completed_at: datetime | None = Field(default=None, description="结束时间")

    @model_validator(mode="after")
    def _check_result_fields(self) -> "Task":
        if self.output_data is not None and self.error is not None:
            raise ValueError("output_data and error are mutually exclusive")
        if self.output_data is not None and self.status != TaskStatus.COMPLETED:
            raise ValueError("output_data is only allowed on COMPLETED tasks")
        if self.error is not None and self.status != TaskStatus.FAILED:
            raise ValueError("error is only allowed on FAILED tasks")
        return self


class WorkflowResult(BaseModel):
    """Workflow 执行结果

    业务级失败通过 status=failed 返回，只有真正意外的故障才抛异常。
    """

    status: WorkflowStatus
    result: Any | None = None
    error: str | None = None

    @classmethod
    def completed(cls, result: Any = None) -> "WorkflowResult":
        return cls(status=WorkflowStatus.COMPLETED, result=result)

    @classmethod
    def failed(cls, error: str) -> "WorkflowResult":
        return cls(status=WorkflowStatus.FAILED, error=error)
