"""SQLite 数据库初始化

PRAGMA 配置 + 任务/队列/事件流/对话记忆表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id       TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    type          TEXT NOT NULL,
    status        TEXT NOT NULL DEFAULT 'PENDING',
    input_data    TEXT NOT NULL DEFAULT '{}',
    output_data   TEXT,
    error         TEXT,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL,
    started_at    TEXT,
    completed_at  TEXT
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_user_created ON tasks(user_id, created_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_user_type_status ON tasks(user_id, type, status);",
]

# queue_jobs 表 DDL（时间字段为 epoch 毫秒，便于租约比较）
_QUEUE_JOBS_DDL = """
CREATE TABLE IF NOT EXISTS queue_jobs (
    job_id           TEXT PRIMARY KEY,
    queue_name       TEXT NOT NULL,
    name             TEXT NOT NULL,
    payload          TEXT NOT NULL DEFAULT '{}',
    status           TEXT NOT NULL DEFAULT 'waiting',
    attempts_made    INTEGER NOT NULL DEFAULT 0,
    max_attempts     INTEGER NOT NULL DEFAULT 3,
    backoff          TEXT NOT NULL DEFAULT '{}',
    stalled_count    INTEGER NOT NULL DEFAULT 0,
    available_at     INTEGER NOT NULL,
    locked_by        TEXT,
    lock_expires_at  INTEGER,
    last_error       TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,
    finished_at      TEXT
);
"""

_QUEUE_JOBS_INDEXES = [
    # 领取顺序：同队列内按可用时间 + 入队顺序
    (
        "CREATE INDEX IF NOT EXISTS idx_queue_jobs_ready "
        "ON queue_jobs(queue_name, status, available_at, job_id);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_queue_jobs_lease ON queue_jobs(status, lock_expires_at);",
]

# 事件流条目表 DDL：ID = <ms>-<seq>，严格递增
_STREAM_ENTRIES_DDL = """
CREATE TABLE IF NOT EXISTS stream_entries (
    stream_key  TEXT NOT NULL,
    ms          INTEGER NOT NULL,
    seq         INTEGER NOT NULL,
    fields      TEXT NOT NULL,

    PRIMARY KEY (stream_key, ms, seq)
);
"""

# 消费组游标表
_STREAM_GROUPS_DDL = """
CREATE TABLE IF NOT EXISTS stream_groups (
    stream_key   TEXT NOT NULL,
    group_name   TEXT NOT NULL,
    last_ms      INTEGER NOT NULL DEFAULT 0,
    last_seq     INTEGER NOT NULL DEFAULT 0,
    created_at   TEXT NOT NULL,

    PRIMARY KEY (stream_key, group_name)
);
"""

# 消费组 pending 列表（已投递未确认）
_STREAM_PENDING_DDL = """
CREATE TABLE IF NOT EXISTS stream_pending (
    stream_key      TEXT NOT NULL,
    group_name      TEXT NOT NULL,
    ms              INTEGER NOT NULL,
    seq             INTEGER NOT NULL,
    consumer        TEXT NOT NULL,
    delivery_count  INTEGER NOT NULL DEFAULT 1,
    delivered_at    INTEGER NOT NULL,

    PRIMARY KEY (stream_key, group_name, ms, seq),
    FOREIGN KEY (stream_key, group_name) REFERENCES stream_groups(stream_key, group_name)
);
"""

_STREAM_INDEXES = [
    (
        "CREATE INDEX IF NOT EXISTS idx_stream_pending_consumer "
        "ON stream_pending(stream_key, group_name, consumer, ms, seq);"
    ),
]

# 对话记忆表
_CHAT_TURNS_DDL = """
CREATE TABLE IF NOT EXISTS chat_turns (
    turn_id    INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    TEXT NOT NULL,
    role       TEXT NOT NULL,
    content    TEXT NOT NULL,
    timestamp  INTEGER NOT NULL
);
"""

_CHAT_TURNS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_chat_turns_user ON chat_turns(user_id, turn_id);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (
        _TASKS_DDL,
        _QUEUE_JOBS_DDL,
        _STREAM_ENTRIES_DDL,
        _STREAM_GROUPS_DDL,
        _STREAM_PENDING_DDL,
        _CHAT_TURNS_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _QUEUE_JOBS_INDEXES + _STREAM_INDEXES + _CHAT_TURNS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
