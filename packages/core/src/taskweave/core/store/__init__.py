"""TaskWeave Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
队列与事件流也建在同一个连接上，由调用方按需构造。
"""

from pathlib import Path

import aiosqlite

from .chat_store import SqliteChatMemoryStore
from .protocols import ChatMemoryStore, TaskStore
from .sqlite_init import init_db, verify_wal_mode
from .task_store import SqliteTaskStore
from .transaction import get_write_lock, write_transaction


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.task_store = SqliteTaskStore(conn)
        self.chat_store = SqliteChatMemoryStore(conn)

    async def close(self) -> None:
        await self.conn.close()


async def open_connection(db_path: str) -> aiosqlite.Connection:
    """打开并初始化 SQLite 连接

    Args:
        db_path: SQLite 数据库文件路径（":memory:" 表示内存库）

    Returns:
        已完成建表的连接，row_factory 为 aiosqlite.Row
    """
    if db_path != ":memory:":
        # 确保数据库目录存在
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    return conn


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    conn = await open_connection(db_path)
    return StoreGroup(conn=conn)


__all__ = [
    "ChatMemoryStore",
    "SqliteChatMemoryStore",
    "SqliteTaskStore",
    "StoreGroup",
    "TaskStore",
    "create_store_group",
    "get_write_lock",
    "init_db",
    "open_connection",
    "verify_wal_mode",
    "write_transaction",
]
