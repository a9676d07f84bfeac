"""EventStream -- append-only 事件流 + 消费组

在 SQLite 上实现流式日志语义：
- 条目 ID "<ms>-<seq>" 严格递增，条目写入后不可修改
- 条目以 ["event", <StreamEvent JSON>] 字段对存储
- 消费组维护 last_delivered 游标与 pending 列表；
  ">" 读取只投递组内从未投递过的条目，条目仅在 ack 后离开 pending
"""

import asyncio
import json
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import structlog

from ..config import EVENT_STREAM_KEY
from ..models.enums import StreamEventType
from ..models.stream import AccessContext, PendingEntry, PendingSummary, StreamEntry, StreamEvent
from ..store.transaction import write_transaction
from .errors import GroupNotFoundError, StreamError
from .ids import ZERO_ID, StreamId, next_stream_id, parse_stream_id

log = structlog.get_logger()

# 阻塞读的轮询间隔
_POLL_INTERVAL_S = 0.05

# 跨进程写冲突时的最大重试次数
_WRITE_RETRIES = 5


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class EventStream:
    """单个流 key 上的事件流"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        stream_key: str = EVENT_STREAM_KEY,
        clock: Callable[[], int] | None = None,
    ) -> None:
        """
        Args:
            conn: 共享的 aiosqlite 连接
            stream_key: 流 key
            clock: 返回 epoch 毫秒的时钟，测试可注入
        """
        self._conn = conn
        self.stream_key = stream_key
        self._clock = clock or _epoch_ms

    async def publish(
        self,
        type: StreamEventType,
        user_id: str,
        payload: Any = None,
        source: AccessContext | None = None,
        meta: dict[str, Any] | None = None,
    ) -> str:
        """追加一条事实事件

        Args:
            type: 事件类型
            user_id: 事件所属用户
            payload: 事件 payload（pydantic 模型或 dict）
            source: 来源信息，默认 server
            meta: 附加元数据

        Returns:
            流内条目 ID

        Raises:
            Exception: 写入失败记录日志后原样抛出
        """
        if hasattr(payload, "model_dump"):
            payload = payload.model_dump(mode="json")
        event = StreamEvent(
            id=str(uuid.uuid4()),
            type=StreamEventType(type),
            timestamp=self._clock(),
            user_id=user_id,
            source=source or AccessContext(),
            payload=payload or {},
            meta=meta or {},
        )
        fields = json.dumps(["event", event.model_dump_json()])

        try:
            entry_id = await self._append(fields)
        except Exception as e:
            log.error(
                "stream_publish_failed",
                stream=self.stream_key,
                event_type=event.type.value,
                error_type=e.__class__.__name__,
                error=str(e),
            )
            raise

        log.debug(
            "stream_event_published",
            stream=self.stream_key,
            event_type=event.type.value,
            user_id=user_id,
            entry_id=entry_id,
        )
        return entry_id

    async def read(
        self,
        last_id: str = "$",
        count: int = 100,
        block_ms: int | None = None,
    ) -> list[StreamEntry]:
        """非破坏性读取

        Args:
            last_id: "$" 返回最新的 count 条；其他 ID 返回严格在其之后的条目
            count: 最大条数
            block_ms: 无数据时轮询等待的最长毫秒数，None 不等待
        """
        if last_id == "$":

            async def fetch() -> list[StreamEntry]:
                cursor = await self._conn.execute(
                    """
                    SELECT ms, seq, fields FROM (
                        SELECT ms, seq, fields FROM stream_entries
                        WHERE stream_key = ?
                        ORDER BY ms DESC, seq DESC
                        LIMIT ?
                    ) ORDER BY ms ASC, seq ASC
                    """,
                    (self.stream_key, count),
                )
                return [self._row_to_entry(row) for row in await cursor.fetchall()]

        else:
            after = parse_stream_id(last_id)

            async def fetch() -> list[StreamEntry]:
                return await self._entries_after(after, count)

        return await self._with_block(fetch, block_ms)

    async def create_group(self, group: str, start_id: str = "0") -> None:
        """创建消费组（幂等，已存在则忽略）

        Args:
            group: 组名
            start_id: 初始游标；"0" 从头投递，"$" 只投递之后的新条目
        """
        if start_id == "$":
            start = await self._last_id() or ZERO_ID
        else:
            start = parse_stream_id(start_id)

        try:
            async with write_transaction(self._conn):
                await self._conn.execute(
                    """
                    INSERT INTO stream_groups (stream_key, group_name, last_ms, last_seq, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        self.stream_key,
                        group,
                        start.ms,
                        start.seq,
                        datetime.now(UTC).isoformat(),
                    ),
                )
        except aiosqlite.IntegrityError:
            log.debug("stream_group_exists", stream=self.stream_key, group=group)
            return
        log.info("stream_group_created", stream=self.stream_key, group=group, start_id=str(start))

    async def read_group(
        self,
        group: str,
        consumer: str,
        count: int = 10,
        last_id: str = ">",
        block_ms: int | None = None,
    ) -> list[StreamEntry]:
        """按消费组读取

        Args:
            group: 组名
            consumer: 消费者名
            count: 最大条数
            last_id: ">" 投递组内从未投递的新条目并记入该消费者的 pending；
                其他 ID 重读该消费者自己在此 ID 之后的 pending 条目
            block_ms: 无新条目时轮询等待的最长毫秒数（仅 ">" 生效）

        Raises:
            GroupNotFoundError: 消费组不存在
        """
        await self._require_group(group)

        if last_id != ">":
            return await self._pending_for_consumer(group, consumer, parse_stream_id(last_id), count)

        async def fetch() -> list[StreamEntry]:
            return await self._deliver_new(group, consumer, count)

        return await self._with_block(fetch, block_ms)

    async def ack(self, group: str, *entry_ids: str) -> int:
        """确认条目，移出 pending

        失败只记录日志不抛出。

        Returns:
            实际确认的条数
        """
        try:
            ids = [parse_stream_id(entry_id) for entry_id in entry_ids]
            acked = 0
            async with write_transaction(self._conn):
                for sid in ids:
                    cursor = await self._conn.execute(
                        """
                        DELETE FROM stream_pending
                        WHERE stream_key = ? AND group_name = ? AND ms = ? AND seq = ?
                        """,
                        (self.stream_key, group, sid.ms, sid.seq),
                    )
                    acked += cursor.rowcount
            return acked
        except Exception as e:
            log.error(
                "stream_ack_failed",
                stream=self.stream_key,
                group=group,
                entry_ids=list(entry_ids),
                error_type=type(e).__name__,
                error=str(e),
            )
            return 0

    async def pending(self, group: str) -> PendingSummary:
        """消费组 pending 概要

        Raises:
            GroupNotFoundError: 消费组不存在
        """
        await self._require_group(group)
        cursor = await self._conn.execute(
            """
            SELECT consumer, COUNT(*) AS n FROM stream_pending
            WHERE stream_key = ? AND group_name = ?
            GROUP BY consumer
            """,
            (self.stream_key, group),
        )
        consumers = {row["consumer"]: row["n"] for row in await cursor.fetchall()}
        if not consumers:
            return PendingSummary()

        cursor = await self._conn.execute(
            """
            SELECT ms, seq FROM stream_pending
            WHERE stream_key = ? AND group_name = ?
            ORDER BY ms, seq
            """,
            (self.stream_key, group),
        )
        rows = await cursor.fetchall()
        return PendingSummary(
            count=len(rows),
            min_id=str(StreamId(rows[0]["ms"], rows[0]["seq"])),
            max_id=str(StreamId(rows[-1]["ms"], rows[-1]["seq"])),
            consumers=consumers,
        )

    async def pending_entries(
        self,
        group: str,
        consumer: str | None = None,
        count: int = 100,
    ) -> list[PendingEntry]:
        """pending 明细（可按消费者过滤）

        Raises:
            GroupNotFoundError: 消费组不存在
        """
        await self._require_group(group)
        sql = """
            SELECT ms, seq, consumer, delivery_count, delivered_at FROM stream_pending
            WHERE stream_key = ? AND group_name = ?
        """
        params: list[Any] = [self.stream_key, group]
        if consumer is not None:
            sql += " AND consumer = ?"
            params.append(consumer)
        sql += " ORDER BY ms, seq LIMIT ?"
        params.append(count)

        now = self._clock()
        cursor = await self._conn.execute(sql, params)
        return [
            PendingEntry(
                stream_id=str(StreamId(row["ms"], row["seq"])),
                consumer=row["consumer"],
                delivery_count=row["delivery_count"],
                idle_ms=max(now - row["delivered_at"], 0),
            )
            for row in await cursor.fetchall()
        ]

    async def claim_stale(
        self,
        group: str,
        consumer: str,
        min_idle_ms: int,
        count: int = 10,
    ) -> list[StreamEntry]:
        """认领空闲过久的 pending 条目（消费者崩溃后的重投）

        被认领条目转给 consumer，投递计数 +1。

        Raises:
            GroupNotFoundError: 消费组不存在
        """
        await self._require_group(group)
        now = self._clock()
        cursor = await self._conn.execute(
            """
            SELECT p.ms, p.seq, p.consumer, p.delivered_at, e.fields
            FROM stream_pending p
            JOIN stream_entries e
              ON e.stream_key = p.stream_key AND e.ms = p.ms AND e.seq = p.seq
            WHERE p.stream_key = ? AND p.group_name = ? AND p.delivered_at <= ?
            ORDER BY p.ms, p.seq
            LIMIT ?
            """,
            (self.stream_key, group, now - min_idle_ms, count),
        )
        rows = await cursor.fetchall()

        claimed: list[StreamEntry] = []
        async with write_transaction(self._conn):
            for row in rows:
                result = await self._conn.execute(
                    """
                    UPDATE stream_pending
                    SET consumer = ?, delivery_count = delivery_count + 1, delivered_at = ?
                    WHERE stream_key = ? AND group_name = ? AND ms = ? AND seq = ?
                      AND consumer = ? AND delivered_at = ?
                    """,
                    (
                        consumer,
                        now,
                        self.stream_key,
                        group,
                        row["ms"],
                        row["seq"],
                        row["consumer"],
                        row["delivered_at"],
                    ),
                )
                if result.rowcount == 1:
                    claimed.append(self._row_to_entry(row))

        if claimed:
            log.info(
                "stream_entries_claimed",
                stream=self.stream_key,
                group=group,
                consumer=consumer,
                count=len(claimed),
            )
        return claimed

    async def length(self) -> int:
        """流内条目数"""
        cursor = await self._conn.execute(
            "SELECT COUNT(*) AS n FROM stream_entries WHERE stream_key = ?",
            (self.stream_key,),
        )
        row = await cursor.fetchone()
        return row["n"] if row else 0

    async def _append(self, fields: str) -> str:
        for _ in range(_WRITE_RETRIES):
            try:
                # 读最新 ID 前先拿数据库写锁：否则其他进程可在读与写之间追加更大的 ID，
                # 本条落在已投递位置之前，消费组再也读不到
                async with write_transaction(self._conn, immediate=True):
                    sid = next_stream_id(await self._last_id(), self._clock())
                    await self._conn.execute(
                        "INSERT INTO stream_entries (stream_key, ms, seq, fields) VALUES (?, ?, ?, ?)",
                        (self.stream_key, sid.ms, sid.seq, fields),
                    )
                return str(sid)
            except aiosqlite.IntegrityError:
                # 其他进程抢先写入同一 ID，重新计算
                continue
        raise StreamError(f"Failed to allocate stream ID on {self.stream_key}")

    async def _last_id(self) -> StreamId | None:
        cursor = await self._conn.execute(
            """
            SELECT ms, seq FROM stream_entries
            WHERE stream_key = ?
            ORDER BY ms DESC, seq DESC
            LIMIT 1
            """,
            (self.stream_key,),
        )
        row = await cursor.fetchone()
        return StreamId(row["ms"], row["seq"]) if row else None

    async def _entries_after(self, after: StreamId, count: int) -> list[StreamEntry]:
        cursor = await self._conn.execute(
            """
            SELECT ms, seq, fields FROM stream_entries
            WHERE stream_key = ? AND (ms > ? OR (ms = ? AND seq > ?))
            ORDER BY ms ASC, seq ASC
            LIMIT ?
            """,
            (self.stream_key, after.ms, after.ms, after.seq, count),
        )
        return [self._row_to_entry(row) for row in await cursor.fetchall()]

    async def _require_group(self, group: str) -> StreamId:
        cursor = await self._conn.execute(
            "SELECT last_ms, last_seq FROM stream_groups WHERE stream_key = ? AND group_name = ?",
            (self.stream_key, group),
        )
        row = await cursor.fetchone()
        if row is None:
            raise GroupNotFoundError(self.stream_key, group)
        return StreamId(row["last_ms"], row["last_seq"])

    async def _deliver_new(self, group: str, consumer: str, count: int) -> list[StreamEntry]:
        """推进组游标并记录 pending（游标作为乐观锁版本号）"""
        for _ in range(_WRITE_RETRIES):
            async with write_transaction(self._conn):
                cursor_id = await self._require_group(group)
                entries = await self._entries_after(cursor_id, count)
                if not entries:
                    return []

                last = parse_stream_id(entries[-1].stream_id)
                result = await self._conn.execute(
                    """
                    UPDATE stream_groups SET last_ms = ?, last_seq = ?
                    WHERE stream_key = ? AND group_name = ? AND last_ms = ? AND last_seq = ?
                    """,
                    (last.ms, last.seq, self.stream_key, group, cursor_id.ms, cursor_id.seq),
                )
                if result.rowcount != 1:
                    # 其他进程已推进游标，重读
                    continue

                now = self._clock()
                await self._conn.executemany(
                    """
                    INSERT INTO stream_pending (stream_key, group_name, ms, seq,
                                                consumer, delivery_count, delivered_at)
                    VALUES (?, ?, ?, ?, ?, 1, ?)
                    """,
                    [
                        (self.stream_key, group, sid.ms, sid.seq, consumer, now)
                        for sid in (parse_stream_id(e.stream_id) for e in entries)
                    ],
                )
                return entries
        return []

    async def _pending_for_consumer(
        self,
        group: str,
        consumer: str,
        after: StreamId,
        count: int,
    ) -> list[StreamEntry]:
        cursor = await self._conn.execute(
            """
            SELECT e.ms, e.seq, e.fields
            FROM stream_pending p
            JOIN stream_entries e
              ON e.stream_key = p.stream_key AND e.ms = p.ms AND e.seq = p.seq
            WHERE p.stream_key = ? AND p.group_name = ? AND p.consumer = ?
              AND (p.ms > ? OR (p.ms = ? AND p.seq > ?))
            ORDER BY p.ms ASC, p.seq ASC
            LIMIT ?
            """,
            (self.stream_key, group, consumer, after.ms, after.ms, after.seq, count),
        )
        return [self._row_to_entry(row) for row in await cursor.fetchall()]

    async def _with_block(
        self,
        fetch: Callable[[], Awaitable[list[StreamEntry]]],
        block_ms: int | None,
    ) -> list[StreamEntry]:
        entries = await fetch()
        if entries or not block_ms:
            return entries

        loop = asyncio.get_running_loop()
        deadline = loop.time() + block_ms / 1000
        while not entries:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(_POLL_INTERVAL_S, remaining))
            entries = await fetch()
        return entries

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> StreamEntry:
        """将数据库行转换为 StreamEntry"""
        fields = json.loads(row["fields"])
        # 字段以 [name, value, name, value, ...] 平铺
        values = dict(zip(fields[::2], fields[1::2], strict=True))
        return StreamEntry(
            stream_id=str(StreamId(row["ms"], row["seq"])),
            event=StreamEvent.model_validate_json(values["event"]),
        )
