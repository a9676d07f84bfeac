"""写事务封装 -- 同一连接上的写操作串行化

所有 Store 共享同一个 aiosqlite 连接。asyncio 协程在 await 点交错，
多语句写操作若不串行化，会被其他协程的 commit 提前提交。
这里为每个连接维护一把 asyncio.Lock，写事务在锁内执行并原子提交。

跨进程安全不依赖此锁，而是依赖条件 UPDATE + rowcount 检查；
先读后写的分配逻辑（事件流 ID）用 immediate 事务拿数据库写锁。
"""

import asyncio
import weakref
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import aiosqlite

_write_locks: "weakref.WeakKeyDictionary[aiosqlite.Connection, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


def get_write_lock(conn: aiosqlite.Connection) -> asyncio.Lock:
    """获取连接级写锁（懒创建）"""
    lock = _write_locks.get(conn)
    if lock is None:
        lock = asyncio.Lock()
        _write_locks[conn] = lock
    return lock


@asynccontextmanager
async def write_transaction(
    conn: aiosqlite.Connection,
    *,
    immediate: bool = False,
) -> AsyncGenerator[aiosqlite.Connection, None]:
    """在连接写锁内执行写事务，正常退出提交，异常回滚

    注意：asyncio.Lock 不可重入，事务块内不要再嵌套 write_transaction。

    Args:
        conn: 共享连接
        immediate: 以 BEGIN IMMEDIATE 开启事务，先拿到数据库写锁；
            事务内先读后写、且读到的值不能被其他进程抢先改写时使用

    Raises:
        Exception: 事务内任何异常，回滚后原样抛出
    """
    async with get_write_lock(conn):
        try:
            if immediate and not conn.in_transaction:
                await conn.execute("BEGIN IMMEDIATE")
            yield conn
            await conn.commit()
        except BaseException:
            # 含取消：未提交的半截写入不能留给下一个事务提交
            await conn.rollback()
            raise
