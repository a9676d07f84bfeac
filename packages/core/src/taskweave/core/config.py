"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、队列/事件流名称、Worker 运行参数、对话循环常量等可配置项。
"""

import os
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, ValidationError

log = structlog.get_logger()


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKWEAVE_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TASKWEAVE_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskweave.db"),
    )


# 事件流 key（固定命名空间，不分区）
EVENT_STREAM_KEY: str = os.environ.get("TASKWEAVE_EVENT_STREAM_KEY", "taskweave:events:v1")

# Agent 任务队列名称
AGENT_QUEUE_NAME: str = "agent-tasks"

# ReAct 对话循环最大迭代次数
MAX_REACT_ITERATIONS: int = 5

# 每个用户短期记忆保留的最大轮数
MAX_HISTORY: int = 40

# 构建 prompt 时带入的最近对话条数
MAX_CONTEXT_MESSAGES: int = 10

# 实体笔记截断长度
ENTITY_NOTES_SLICE: int = 500

# 短期记忆达到此条数时触发记忆整理任务
MEMORY_FLUSH_THRESHOLD: int = 30
MEMORY_FLUSH_COUNT: int = 20


class WorkerConfig(BaseModel):
    """Worker 运行配置 -- 从环境变量加载

    默认值沿用线上观测到的策略：lease 远大于 p99 workflow 耗时。
    """

    queue_name: str = Field(default=AGENT_QUEUE_NAME, description="消费的队列名称")
    concurrency: int = Field(default=5, ge=1, description="单进程并发处理的任务数")
    lease_duration_ms: int = Field(default=300_000, ge=1, description="任务租约时长（毫秒）")
    stalled_check_interval_ms: int = Field(
        default=60_000,
        ge=1,
        description="卡死任务检测间隔（毫秒）",
    )
    max_attempts: int = Field(default=3, ge=1, description="最大尝试次数（含首次）")
    backoff_delay_ms: int = Field(default=1000, ge=0, description="指数退避基础延迟（毫秒）")
    reconcile_interval_s: int = Field(default=600, ge=1, description="自愈巡检间隔（秒）")
    stale_running_after_s: int = Field(
        default=3600,
        ge=1,
        description="RUNNING 超过此时长视为卡死（秒）",
    )
    stale_pending_after_s: int = Field(
        default=3600,
        ge=1,
        description="PENDING 且无存活队列任务超过此时长视为丢失（秒）",
    )


# 环境变量 -> WorkerConfig 字段
_WORKER_ENV_MAP: dict[str, str] = {
    "TASKWEAVE_WORKER_CONCURRENCY": "concurrency",
    "TASKWEAVE_LEASE_DURATION_MS": "lease_duration_ms",
    "TASKWEAVE_STALLED_CHECK_MS": "stalled_check_interval_ms",
    "TASKWEAVE_MAX_ATTEMPTS": "max_attempts",
    "TASKWEAVE_BACKOFF_DELAY_MS": "backoff_delay_ms",
    "TASKWEAVE_RECONCILE_INTERVAL_S": "reconcile_interval_s",
    "TASKWEAVE_STALE_RUNNING_AFTER_S": "stale_running_after_s",
    "TASKWEAVE_STALE_PENDING_AFTER_S": "stale_pending_after_s",
}


def load_worker_config() -> WorkerConfig:
    """从环境变量加载 Worker 配置

    每个字段单独校验：非整数或越界（如并发为 0）记录 warning 并回退到默认值，
    不阻塞启动。
    """
    kwargs: dict = {}

    if val := os.environ.get("TASKWEAVE_QUEUE_NAME"):
        kwargs["queue_name"] = val

    for env_var, field_name in _WORKER_ENV_MAP.items():
        val = os.environ.get(env_var)
        if not val:
            continue
        try:
            value = int(val)
            WorkerConfig.model_validate({field_name: value})
        except (ValueError, ValidationError):
            log.warning(
                "invalid_worker_config",
                env_var=env_var,
                value=val,
                fallback=WorkerConfig.model_fields[field_name].default,
            )
            continue
        kwargs[field_name] = value

    return WorkerConfig(**kwargs)
