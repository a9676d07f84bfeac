"""Worker 日志配置

structlog 统一出口：
- TASKWEAVE_LOG_FORMAT=json：每行一个 JSON 对象，异常展开为结构化 traceback
- TASKWEAVE_LOG_FORMAT=dev（默认）：ConsoleRenderer 彩色输出
标准库 logging（aiosqlite、litellm、httpx）经 ProcessorFormatter 走同一渲染器，
第三方库的逐请求日志默认压到 WARNING。
"""

import logging
import os

import structlog

LOG_FORMATS = ("dev", "json")

# 这些库在 INFO 级别逐请求打日志
_NOISY_LOGGERS = ("LiteLLM", "httpx", "httpcore", "aiosqlite")


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化 structlog 与标准库 logging

    Args:
        log_format: "dev" 或 "json"，默认读 TASKWEAVE_LOG_FORMAT；未知值按 dev
        log_level: 级别名，默认读 TASKWEAVE_LOG_LEVEL；非法值按 INFO
    """
    log_format = (log_format or os.environ.get("TASKWEAVE_LOG_FORMAT", "dev")).lower()
    if log_format not in LOG_FORMATS:
        log_format = "dev"
    level = _resolve_level(log_level or os.environ.get("TASKWEAVE_LOG_LEVEL", "INFO"))

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == "json":
        pre_chain.append(structlog.processors.dict_tracebacks)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=pre_chain,
        )
    )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def setup_logfire(service_name: str = "taskweave-worker") -> bool:
    """按 LOGFIRE_SEND_TO_LOGFIRE=true 启用 Logfire APM

    需要安装 apm extra 并配置 LOGFIRE_TOKEN；初始化失败只记录告警，
    进程继续使用本地日志。

    Returns:
        True 如果 Logfire 已启用
    """
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return False
    log = structlog.get_logger()
    try:
        import logfire

        logfire.configure(service_name=service_name)
    except Exception as e:
        log.warning("logfire_init_failed", error_type=type(e).__name__, error=str(e))
        return False
    log.info("logfire_enabled", service_name=service_name)
    return True
