"""集成测试配置 -- 基于临时数据库的完整引擎"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from taskweave.core.config import WorkerConfig
from taskweave.provider import EchoInferenceClient
from taskweave.worker.context import EngineContext, create_engine_context

QUEUE = "it-tasks"


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[EngineContext, None]:
    """echo 推理、零退避的引擎上下文"""
    config = WorkerConfig(queue_name=QUEUE, concurrency=1, max_attempts=2, backoff_delay_ms=0)
    ctx = await create_engine_context(
        str(tmp_path / "integration.db"),
        config=config,
        inference=EchoInferenceClient(),
    )
    yield ctx
    await ctx.close()
