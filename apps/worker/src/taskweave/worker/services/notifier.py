"""UserEventHub -- 内存中按用户的实时事件广播器

每个订阅者持有一个 asyncio.Queue，支持 subscribe/unsubscribe/emit_to_user。
外部实时通道（WebSocket/SSE 网关）订阅后转发给客户端。
"""

import asyncio
from collections import defaultdict
from typing import Any, Protocol

from pydantic import BaseModel, Field

# 任务状态更新事件名
AGENT_TASK_UPDATED = "agent:task_updated"


class UserNotification(BaseModel):
    """推送给用户的一条实时消息"""

    event: str = Field(description="事件名")
    payload: dict[str, Any] = Field(default_factory=dict)


class UserNotifier(Protocol):
    """实时通知接口"""

    async def emit_to_user(self, user_id: str, event_name: str, payload: dict[str, Any]) -> None:
        """推送事件给用户的所有在线连接"""
        ...


class UserEventHub:
    """用户事件广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # user_id -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    async def subscribe(self, user_id: str) -> asyncio.Queue:
        """订阅指定用户的事件

        Args:
            user_id: 用户 ID

        Returns:
            asyncio.Queue 实例，新事件会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[user_id].add(queue)
        return queue

    async def unsubscribe(self, user_id: str, queue: asyncio.Queue) -> None:
        """取消订阅

        Args:
            user_id: 用户 ID
            queue: 之前订阅时返回的队列
        """
        self._subscribers[user_id].discard(queue)
        if not self._subscribers[user_id]:
            del self._subscribers[user_id]

    async def emit_to_user(self, user_id: str, event_name: str, payload: dict[str, Any]) -> None:
        """向用户的所有订阅者广播事件

        Args:
            user_id: 用户 ID
            event_name: 事件名
            payload: 事件内容
        """
        notification = UserNotification(event=event_name, payload=payload)
        dead_queues = []
        for queue in self._subscribers.get(user_id, set()):
            try:
                queue.put_nowait(notification)
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列（消费方已失联）
        for q in dead_queues:
            self._subscribers[user_id].discard(q)
        if user_id in self._subscribers and not self._subscribers[user_id]:
            del self._subscribers[user_id]

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, set()))
