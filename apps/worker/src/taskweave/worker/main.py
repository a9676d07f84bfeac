"""Worker 进程主文件

启动：初始化日志 -> 打开数据库 -> 注册 workflow 并冻结注册表 -> 启动队列消费者与自愈巡检
关闭：SIGINT/SIGTERM 触发优雅停止，等待进行中的消息结束后关闭连接。
"""

import asyncio
import contextlib
import signal

import structlog
from taskweave.core.config import WorkerConfig
from taskweave.core.models import TaskType
from taskweave.core.reconciler import TaskReconciler

from .context import EngineContext, create_engine_context
from .logging_config import setup_logfire, setup_logging
from .registry import WorkflowExecutor
from .workflows.builtin import MemorySummarizer, register_default_workflows

log = structlog.get_logger()

# 优雅停止时等待进行中消息的上限（秒）
SHUTDOWN_TIMEOUT_S = 30.0


async def reconcile_loop(
    reconciler: TaskReconciler,
    interval_s: float,
    stop: asyncio.Event,
) -> None:
    """周期性自愈巡检，直到 stop 被置位"""
    while not stop.is_set():
        try:
            report = await reconciler.sweep()
            if report.total:
                log.info(
                    "reconcile_sweep_done",
                    stale_running=len(report.stale_running),
                    never_dispatched=len(report.never_dispatched),
                )
        except Exception as e:
            log.error("reconcile_sweep_failed", error_type=type(e).__name__, error=str(e))
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval_s)


async def run_worker(
    ctx: EngineContext,
    stop: asyncio.Event,
    workflows: dict[TaskType, WorkflowExecutor] | None = None,
    summarize: MemorySummarizer | None = None,
) -> None:
    """在给定上下文中运行 worker，直到 stop 被置位

    Args:
        ctx: 引擎上下文
        stop: 停止信号
        workflows: 嵌入方提供的额外 workflow
        summarize: 记忆整理钩子（MEMORY_FLUSH）
    """
    register_default_workflows(
        ctx.registry,
        workflows,
        memory=ctx.stores.chat_store,
        summarize=summarize,
    )
    ctx.registry.freeze()

    worker = ctx.create_queue_worker()
    await worker.start()
    reconciler_task = asyncio.create_task(
        reconcile_loop(ctx.reconciler, ctx.config.reconcile_interval_s, stop)
    )
    try:
        await stop.wait()
    finally:
        log.info("worker_shutting_down", in_flight=worker.in_flight)
        await worker.close(timeout_s=SHUTDOWN_TIMEOUT_S)
        await reconciler_task


async def serve(config: WorkerConfig | None = None) -> None:
    """进程入口：装配上下文、挂信号、运行到收到停止信号"""
    ctx = await create_engine_context(config=config)
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    log.info(
        "worker_starting",
        queue=ctx.config.queue_name,
        concurrency=ctx.config.concurrency,
        lease_duration_ms=ctx.config.lease_duration_ms,
    )
    try:
        await run_worker(ctx, stop)
    finally:
        await ctx.close()
        log.info("worker_stopped")


def main() -> None:
    setup_logging()
    setup_logfire()
    asyncio.run(serve())


if __name__ == "__main__":
    main()
