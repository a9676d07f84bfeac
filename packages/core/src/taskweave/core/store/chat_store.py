"""ChatMemoryStore SQLite 实现 -- 用户短期对话记忆

每个用户只保留最近 MAX_HISTORY 轮，写入时裁剪；
记忆整理完成后由 remove_oldest 删除已整理的最早若干轮。
"""

import time

import aiosqlite

from ..config import MAX_HISTORY
from ..models.chat import ChatTurn
from ..models.enums import ChatRole
from .transaction import write_transaction


class SqliteChatMemoryStore:
    """ChatMemoryStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection, max_history: int = MAX_HISTORY) -> None:
        self._conn = conn
        self._max_history = max_history

    async def add_message(self, user_id: str, role: ChatRole, content: str) -> ChatTurn:
        """追加一轮对话并裁剪到 max_history"""
        turn = ChatTurn(role=role, content=content, timestamp=int(time.time() * 1000))
        async with write_transaction(self._conn):
            await self._conn.execute(
                "INSERT INTO chat_turns (user_id, role, content, timestamp) VALUES (?, ?, ?, ?)",
                (user_id, turn.role.value, turn.content, turn.timestamp),
            )
            await self._conn.execute(
                """
                DELETE FROM chat_turns
                WHERE user_id = ? AND turn_id NOT IN (
                    SELECT turn_id FROM chat_turns
                    WHERE user_id = ?
                    ORDER BY turn_id DESC
                    LIMIT ?
                )
                """,
                (user_id, user_id, self._max_history),
            )
        return turn

    async def get_history(self, user_id: str) -> list[ChatTurn]:
        """按时间正序返回用户最近的对话"""
        cursor = await self._conn.execute(
            "SELECT role, content, timestamp FROM chat_turns WHERE user_id = ? ORDER BY turn_id ASC",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [
            ChatTurn(role=row["role"], content=row["content"], timestamp=row["timestamp"])
            for row in rows
        ]

    async def clear(self, user_id: str) -> None:
        """清空用户记忆（开启新会话）"""
        async with write_transaction(self._conn):
            await self._conn.execute("DELETE FROM chat_turns WHERE user_id = ?", (user_id,))

    async def remove_oldest(self, user_id: str, count: int) -> int:
        """删除用户最早的 count 轮对话（记忆整理后调用）

        Returns:
            实际删除的条数
        """
        if count <= 0:
            return 0
        async with write_transaction(self._conn):
            cursor = await self._conn.execute(
                """
                DELETE FROM chat_turns
                WHERE turn_id IN (
                    SELECT turn_id FROM chat_turns
                    WHERE user_id = ?
                    ORDER BY turn_id ASC
                    LIMIT ?
                )
                """,
                (user_id, count),
            )
        return cursor.rowcount
