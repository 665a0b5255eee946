"""linerelay 队列存储 -- 单个 SQLite 文件承载队列、去重与序号分配

进程内所有组件共享一个 aiosqlite 连接；StoreGroup 负责其生命周期。
"""

from pathlib import Path

import aiosqlite
import structlog

from .dedup import Deduplicator
from .queue_store import SqliteMessageQueue
from .sqlite_init import init_db, verify_wal_mode

log = structlog.get_logger()


class StoreGroup:
    """共享连接上的队列与去重器，可作为 async 上下文管理器使用"""

    def __init__(self, conn: aiosqlite.Connection, db_path: str | None = None) -> None:
        self.conn = conn
        self.db_path = db_path
        self.queue = SqliteMessageQueue(conn)
        self.deduplicator = Deduplicator(self.queue)

    async def close(self) -> None:
        await self.conn.close()

    async def __aenter__(self) -> "StoreGroup":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


async def create_store_group(db_path: str) -> StoreGroup:
    """打开（必要时创建）队列数据库

    父目录不存在时自动创建；建表与 PRAGMA 幂等，重启后直接复用已有数据。
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    if not await verify_wal_mode(conn):
        log.warning("sqlite_wal_unavailable", db_path=db_path)

    return StoreGroup(conn, db_path)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "SqliteMessageQueue",
    "Deduplicator",
    "init_db",
    "verify_wal_mode",
]
