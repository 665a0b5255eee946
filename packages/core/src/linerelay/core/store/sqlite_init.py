"""SQLite 数据库初始化

PRAGMA 配置 + messages / ledger_sequences 两张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# messages 表 DDL：持久化队列，也是审计记录（不删除）
_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    message_id        TEXT PRIMARY KEY,
    external_id       TEXT NOT NULL,
    sender_id         TEXT NOT NULL,
    sender_name       TEXT NOT NULL,
    kind              TEXT NOT NULL,
    content           TEXT,
    media_ref         TEXT,
    file_name         TEXT,
    occurred_at       TEXT NOT NULL,
    received_at       TEXT NOT NULL,
    status            TEXT NOT NULL DEFAULT 'PENDING',
    attempts          INTEGER NOT NULL DEFAULT 0,
    partition_misses  INTEGER NOT NULL DEFAULT 0,
    last_error        TEXT,
    retry_not_before  TEXT,
    claimed_by        TEXT,
    claimed_at        TEXT,
    blob_ref          TEXT,
    ledger_seq        INTEGER,
    updated_at        TEXT NOT NULL
);
"""

_MESSAGES_INDEXES = [
    # 去重唯一约束
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_messages_external_id ON messages(external_id);",
    # 认领查询：按状态 + 最早重试时间
    (
        "CREATE INDEX IF NOT EXISTS idx_messages_status_retry "
        "ON messages(status, retry_not_before);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_messages_occurred_at ON messages(occurred_at);",
]

# ledger 分区序号计数器
_LEDGER_SEQUENCES_DDL = """
CREATE TABLE IF NOT EXISTS ledger_sequences (
    partition_key  TEXT PRIMARY KEY,
    last_seq       INTEGER NOT NULL DEFAULT 0
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_MESSAGES_DDL)
    await conn.execute(_LEDGER_SEQUENCES_DDL)

    # 创建索引
    for idx_sql in _MESSAGES_INDEXES:
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
