"""Stream Event Domain Model -- 不可变事实事件

事件流 append-only，事件写入后不再修改或删除。
同一流内顺序即存储的原生追加顺序。
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from .enums import StreamEventType


class AccessContext(BaseModel):
    """事件来源信息（设备/平台/版本）"""

    device_id: str = Field(default="server", description="设备标识")
    platform: Literal["web", "mobile", "ext", "server"] = Field(
        default="server",
        description="来源平台",
    )
    version: str = Field(default="1.0.0", description="客户端版本")


class StreamEvent(BaseModel):
    """事件流中的一条不可变事实"""

    model_config = {"frozen": True}

    id: str = Field(description="事件 ID，UUIDv4")
    type: StreamEventType = Field(description="事件类型")
    timestamp: int = Field(description="UTC epoch 毫秒")
    user_id: str = Field(description="事件所属用户")
    source: AccessContext = Field(default_factory=AccessContext, description="来源信息")
    payload: dict[str, Any] = Field(default_factory=dict, description="事件专属 payload")
    meta: dict[str, Any] = Field(default_factory=dict, description="附加元数据")


class StreamEntry(BaseModel):
    """读取结果：流内 ID + 事件"""

    stream_id: str = Field(description="流内条目 ID，格式 <ms>-<seq>")
    event: StreamEvent


class PendingEntry(BaseModel):
    """消费组中已投递未确认的条目"""

    stream_id: str
    consumer: str
    delivery_count: int = Field(ge=1)
    idle_ms: int = Field(ge=0, description="距上次投递的毫秒数")


class PendingSummary(BaseModel):
    """消费组 pending 概要"""

    count: int = 0
    min_id: str | None = None
    max_id: str | None = None
    consumers: dict[str, int] = Field(default_factory=dict)


class TaskRescheduledPayload(BaseModel):
    """task_rescheduled 事件 payload"""

    task_id: str
    old_date: str = Field(description="ISO 字符串")
    new_date: str = Field(description="ISO 字符串")
    reason: str | None = None


class FocusEnteredPayload(BaseModel):
    """focus_entered 事件 payload"""

    app_name: str
    window_title: str | None = None


class DistractionDetectedPayload(BaseModel):
    """distraction_detected 事件 payload"""

    app_name: str
    duration_sec: int
