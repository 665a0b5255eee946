"""全局 pytest 配置 -- 临时 SQLite 数据库 fixture 与消息构造工具"""

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from itertools import count
from pathlib import Path

import aiosqlite
import pytest
import pytest_asyncio
from linerelay.core.models import INLINE_KINDS, Message, MessageKind


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 5, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from linerelay.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_db_path))
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path):
    """提供 StoreGroup（队列 + 去重器）"""
    from linerelay.core.store import create_store_group

    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_message() -> Callable[..., Message]:
    """构造 PENDING 消息；external_id 默认自增"""
    seq = count(1)

    def factory(
        kind: MessageKind = MessageKind.TEXT,
        *,
        external_id: str | None = None,
        sender_name: str = "alice",
        occurred_at: datetime | None = None,
        content: str | None = None,
        media_ref: str | None = None,
        **kwargs,
    ) -> Message:
        n = next(seq)
        occurred = occurred_at or datetime(2024, 1, 5, 10, 0, tzinfo=UTC) + timedelta(
            seconds=n
        )
        if kind in INLINE_KINDS:
            content = content if content is not None else f"hello {n}"
            media_ref = None
        else:
            media_ref = media_ref or f"media-{n}"
            content = None
        return Message(
            message_id=kwargs.pop("message_id", f"01TESTMSG{n:017d}"),
            external_id=external_id or f"ext-{n}",
            sender_id=kwargs.pop("sender_id", f"U{sender_name}"),
            sender_name=sender_name,
            kind=kind,
            content=content,
            media_ref=media_ref,
            occurred_at=occurred,
            received_at=occurred,
            updated_at=occurred,
            **kwargs,
        )

    return factory
