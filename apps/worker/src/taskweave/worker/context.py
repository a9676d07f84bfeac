"""EngineContext -- 引擎依赖注入容器

把共享连接上的各个 Store、队列、事件流、注册表、通知器、推理服务
组装在一起，替代进程级单例。测试可以逐项替换。
"""

import aiosqlite
from taskweave.core.config import WorkerConfig, get_db_path, load_worker_config
from taskweave.core.models import RetryPolicy, WorkerOptions
from taskweave.core.queue import QueueWorker, SqliteQueue
from taskweave.core.reconciler import TaskReconciler
from taskweave.core.store import StoreGroup, open_connection
from taskweave.core.stream import EventStream
from taskweave.provider import InferenceService, create_inference_service

from .chat.entities import ContextProvider, EntityDetector, EntityDirectory
from .chat.loop import ToolCallingChatLoop
from .chat.service import AgentChatService
from .chat.tools import ToolRegistry, background_task_tool
from .hooks import TaskHooks
from .registry import WorkflowRegistry
from .services.notifier import UserEventHub, UserNotifier
from .services.orchestrator import TaskOrchestrator
from .services.task_service import TaskService


class EngineContext:
    """引擎组件集合 -- 共享同一个数据库连接"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        config: WorkerConfig | None = None,
        inference: InferenceService | None = None,
        notifier: UserNotifier | None = None,
        registry: WorkflowRegistry | None = None,
        hooks: TaskHooks | None = None,
    ) -> None:
        self.config = config or WorkerConfig()
        self.stores = StoreGroup(conn)
        self.queue = SqliteQueue(conn)
        self.event_stream = EventStream(conn)
        self.registry = registry or WorkflowRegistry()
        self.hooks = hooks or TaskHooks()
        self.notifier = notifier if notifier is not None else UserEventHub()
        self._inference = inference

        self.retry_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            delay_ms=self.config.backoff_delay_ms,
        )
        self.task_service = TaskService(
            task_store=self.stores.task_store,
            queue=self.queue,
            queue_name=self.config.queue_name,
            retry_policy=self.retry_policy,
            notifier=self.notifier,
        )
        self.orchestrator = TaskOrchestrator(
            task_store=self.stores.task_store,
            registry=self.registry,
            notifier=self.notifier,
            hooks=self.hooks,
        )
        self.reconciler = TaskReconciler(
            task_store=self.stores.task_store,
            queue=self.queue,
            queue_name=self.config.queue_name,
            stale_running_after_s=self.config.stale_running_after_s,
            stale_pending_after_s=self.config.stale_pending_after_s,
            on_failed=self.orchestrator.notify_task,
        )

    @property
    def conn(self) -> aiosqlite.Connection:
        return self.stores.conn

    @property
    def inference(self) -> InferenceService:
        """推理服务（首次访问时按环境变量构造）"""
        if self._inference is None:
            self._inference = create_inference_service()
        return self._inference

    def worker_options(self) -> WorkerOptions:
        return WorkerOptions(
            concurrency=self.config.concurrency,
            lease_duration_ms=self.config.lease_duration_ms,
            stalled_check_interval_ms=self.config.stalled_check_interval_ms,
        )

    def create_queue_worker(self, worker_id: str | None = None) -> QueueWorker:
        """以 orchestrator 为 handler 的队列消费者"""
        return QueueWorker(
            queue=self.queue,
            queue_name=self.config.queue_name,
            handler=self.orchestrator.process,
            options=self.worker_options(),
            worker_id=worker_id,
        )

    def create_chat_service(
        self,
        tools: ToolRegistry | None = None,
        entity_directory: EntityDirectory | None = None,
        context_provider: ContextProvider | None = None,
    ) -> AgentChatService:
        """组装对话服务；未指定工具时只暴露后台任务工具

        记忆整理任务只为本上下文注册表中有 workflow 的类型创建。
        """
        if tools is None:
            tools = ToolRegistry([background_task_tool(self.task_service.create_task)])
        loop = ToolCallingChatLoop(
            inference=self.inference,
            tools=tools,
            memory=self.stores.chat_store,
            entity_detector=EntityDetector(entity_directory) if entity_directory else None,
            context_provider=context_provider,
        )
        return AgentChatService(
            memory=self.stores.chat_store,
            loop=loop,
            task_service=self.task_service,
            registry=self.registry,
        )

    async def close(self) -> None:
        await self.stores.close()


async def create_engine_context(
    db_path: str | None = None,
    config: WorkerConfig | None = None,
    **kwargs,
) -> EngineContext:
    """打开数据库并创建 EngineContext

    Args:
        db_path: SQLite 路径，默认 get_db_path()
        config: Worker 配置，默认从环境变量加载
        **kwargs: 透传给 EngineContext（inference/notifier/registry/hooks）
    """
    conn = await open_connection(db_path or get_db_path())
    return EngineContext(conn, config=config or load_worker_config(), **kwargs)
