"""MessageQueue SQLite 实现 -- 持久化队列（系统记录）

每条被接受的消息在任何外部 I/O 之前写入 messages 表。
认领通过逐条条件更新（compare-and-set）实现，不跨网络调用持锁。
消息永不删除，死信保留以供审计与人工重放。
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

import aiosqlite

from ..config import LAST_ERROR_MAX_LENGTH
from ..exceptions import MessageNotFoundError, MessageStatusConflictError
from ..models.enums import (
    CLAIMABLE_STATES,
    CLAIMED_STATES,
    TERMINAL_STATES,
    MessageStatus,
    validate_transition,
)
from ..models.message import Message, ensure_utc

_COLUMNS = (
    "message_id",
    "external_id",
    "sender_id",
    "sender_name",
    "kind",
    "content",
    "media_ref",
    "file_name",
    "occurred_at",
    "received_at",
    "status",
    "attempts",
    "partition_misses",
    "last_error",
    "retry_not_before",
    "claimed_by",
    "claimed_at",
    "blob_ref",
    "ledger_seq",
    "updated_at",
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM messages"

_DATETIME_COLUMNS = {
    "occurred_at",
    "received_at",
    "retry_not_before",
    "claimed_at",
    "updated_at",
}

# update_status 允许随状态一起修改的列
_UPDATABLE_COLUMNS = {
    "attempts",
    "partition_misses",
    "retry_not_before",
    "claimed_by",
    "claimed_at",
    "blob_ref",
    "ledger_seq",
}

# 认领时多取的候选数，减少并发认领全部落空的概率
_CLAIM_CANDIDATE_FACTOR = 4

_CLAIMABLE = tuple(s.value for s in sorted(CLAIMABLE_STATES))
_CLAIMED = tuple(s.value for s in sorted(CLAIMED_STATES))


def _ts(value: datetime) -> str:
    """定宽 UTC ISO-8601 字符串，保证字典序即时间序"""
    return ensure_utc(value).isoformat(timespec="microseconds")


def _encode(column: str, value: Any) -> Any:
    if value is None:
        return None
    if column in _DATETIME_COLUMNS:
        return _ts(value)
    if isinstance(value, Enum):
        return value.value
    return value


def _placeholders(values: tuple) -> str:
    return ", ".join("?" for _ in values)


class SqliteMessageQueue:
    """持久化队列的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def enqueue(self, message: Message) -> bool:
        """原子 insert-if-absent（以 external_id 为键）

        Returns:
            True 表示新插入，False 表示 external_id 已存在（原记录不变）
        """
        values = tuple(_encode(col, getattr(message, col)) for col in _COLUMNS)
        cursor = await self._conn.execute(
            f"""
            INSERT INTO messages ({', '.join(_COLUMNS)})
            VALUES ({_placeholders(values)})
            ON CONFLICT(external_id) DO NOTHING
            """,
            values,
        )
        await self._conn.commit()
        return cursor.rowcount == 1

    async def get(self, message_id: str) -> Message | None:
        """根据 message_id 查询消息"""
        cursor = await self._conn.execute(
            f"{_SELECT} WHERE message_id = ?",
            (message_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_message(row)

    async def get_by_external_id(self, external_id: str) -> Message | None:
        """根据来源消息 ID 查询"""
        cursor = await self._conn.execute(
            f"{_SELECT} WHERE external_id = ?",
            (external_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_message(row)

    async def claim_batch(
        self,
        limit: int,
        worker_id: str,
        now: datetime | None = None,
    ) -> list[Message]:
        """认领至多 limit 条到期消息（PENDING 或已到重试时间的 RETRYABLE）

        每条消息单独执行 compare-and-set：只有状态仍可认领且已到期时
        才会被置为 IN_FLIGHT，因此并发调用方不会认领到同一条消息。
        """
        if limit <= 0:
            return []
        now_s = _ts(now or datetime.now(UTC))
        due_clause = (
            f"status IN ({_placeholders(_CLAIMABLE)}) "
            "AND (retry_not_before IS NULL OR retry_not_before <= ?)"
        )

        cursor = await self._conn.execute(
            f"""
            SELECT message_id FROM messages
            WHERE {due_clause}
            ORDER BY occurred_at ASC, message_id ASC
            LIMIT ?
            """,
            (*_CLAIMABLE, now_s, limit * _CLAIM_CANDIDATE_FACTOR),
        )
        candidates = [row[0] for row in await cursor.fetchall()]

        claimed: list[str] = []
        for message_id in candidates:
            if len(claimed) >= limit:
                break
            cursor = await self._conn.execute(
                f"""
                UPDATE messages
                SET status = ?, claimed_by = ?, claimed_at = ?, updated_at = ?
                WHERE message_id = ? AND {due_clause}
                """,
                (
                    MessageStatus.IN_FLIGHT.value,
                    worker_id,
                    now_s,
                    now_s,
                    message_id,
                    *_CLAIMABLE,
                    now_s,
                ),
            )
            await self._conn.commit()
            if cursor.rowcount == 1:
                claimed.append(message_id)

        messages = []
        for message_id in claimed:
            message = await self.get(message_id)
            if message is not None:
                messages.append(message)
        return messages

    async def update_status(
        self,
        message_id: str,
        new_status: MessageStatus,
        error: str | None = None,
        *,
        now: datetime | None = None,
        **changes: Any,
    ) -> Message:
        """按状态机推进消息状态

        以当前状态为条件更新（CAS）。流转非法或并发竞争失败时抛出
        MessageStatusConflictError。进入 RETRYABLE 或终态时释放认领。

        Args:
            message_id: 消息 ID
            new_status: 目标状态
            error: 写入 last_error 的错误描述（超长截断）
            now: 更新时间，默认当前 UTC
            **changes: 随状态一起修改的列（attempts、blob_ref 等）

        Returns:
            更新后的 Message
        """
        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"不可更新的列: {sorted(unknown)}")

        current = await self.get(message_id)
        if current is None:
            raise MessageNotFoundError(message_id)
        if not validate_transition(current.status, new_status):
            raise MessageStatusConflictError(message_id, current.status, new_status)

        assignments: dict[str, Any] = {
            "status": new_status.value,
            "updated_at": _ts(now or datetime.now(UTC)),
        }
        if new_status is MessageStatus.RETRYABLE or new_status in TERMINAL_STATES:
            assignments["claimed_by"] = None
            assignments["claimed_at"] = None
        if error is not None:
            assignments["last_error"] = error[:LAST_ERROR_MAX_LENGTH]
        for column, value in changes.items():
            assignments[column] = _encode(column, value)

        set_clause = ", ".join(f"{column} = ?" for column in assignments)
        cursor = await self._conn.execute(
            f"UPDATE messages SET {set_clause} WHERE message_id = ? AND status = ?",
            (*assignments.values(), message_id, current.status.value),
        )
        await self._conn.commit()
        if cursor.rowcount != 1:
            raise MessageStatusConflictError(message_id, current.status, new_status)

        updated = await self.get(message_id)
        assert updated is not None
        return updated

    async def allocate_sequence(self, message_id: str, partition_key: str) -> int:
        """为消息分配分区内序号；已分配过则直接返回原序号

        序号随消息持久化，重试时复用，使 ledger 追加可重入。
        """
        current = await self.get(message_id)
        if current is None:
            raise MessageNotFoundError(message_id)
        if current.ledger_seq is not None:
            return current.ledger_seq

        # 执行与读取在同一次调用内完成，RETURNING 语句不会与其他协程的提交交错
        rows = await self._conn.execute_fetchall(
            """
            INSERT INTO ledger_sequences (partition_key, last_seq) VALUES (?, 1)
            ON CONFLICT(partition_key) DO UPDATE SET last_seq = last_seq + 1
            RETURNING last_seq
            """,
            (partition_key,),
        )
        seq = list(rows)[0][0]

        cursor = await self._conn.execute(
            "UPDATE messages SET ledger_seq = ? WHERE message_id = ? AND ledger_seq IS NULL",
            (seq, message_id),
        )
        await self._conn.commit()
        if cursor.rowcount != 1:
            # 其他调用方已先行分配，以已落盘的序号为准
            existing = await self.get(message_id)
            assert existing is not None and existing.ledger_seq is not None
            return existing.ledger_seq
        return seq

    async def list_retryable(self, now: datetime | None = None) -> list[Message]:
        """查询已到重试时间的 RETRYABLE 消息"""
        cursor = await self._conn.execute(
            f"""
            {_SELECT}
            WHERE status = ? AND (retry_not_before IS NULL OR retry_not_before <= ?)
            ORDER BY retry_not_before ASC, occurred_at ASC
            """,
            (MessageStatus.RETRYABLE.value, _ts(now or datetime.now(UTC))),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def list_by_status(
        self,
        status: MessageStatus,
        limit: int | None = None,
    ) -> list[Message]:
        """按状态查询消息，按 occurred_at 倒序"""
        sql = f"{_SELECT} WHERE status = ? ORDER BY occurred_at DESC"
        params: tuple = (status.value,)
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def count_by_status(self) -> dict[MessageStatus, int]:
        """各状态消息数"""
        cursor = await self._conn.execute(
            "SELECT status, COUNT(*) FROM messages GROUP BY status"
        )
        rows = await cursor.fetchall()
        counts = {status: 0 for status in MessageStatus}
        for row in rows:
            counts[MessageStatus(row[0])] = row[1]
        return counts

    async def replay(self, message_id: str, now: datetime | None = None) -> Message:
        """人工重放：DEAD_LETTERED -> PENDING，重置尝试计数

        保留 last_error、blob_ref、ledger_seq，重放时复用已完成的检查点。
        """
        now_s = _ts(now or datetime.now(UTC))
        cursor = await self._conn.execute(
            """
            UPDATE messages
            SET status = ?, attempts = 0, partition_misses = 0,
                retry_not_before = NULL, claimed_by = NULL, claimed_at = NULL,
                updated_at = ?
            WHERE message_id = ? AND status = ?
            """,
            (
                MessageStatus.PENDING.value,
                now_s,
                message_id,
                MessageStatus.DEAD_LETTERED.value,
            ),
        )
        await self._conn.commit()
        if cursor.rowcount != 1:
            current = await self.get(message_id)
            if current is None:
                raise MessageNotFoundError(message_id)
            raise MessageStatusConflictError(
                message_id, current.status, MessageStatus.PENDING
            )

        replayed = await self.get(message_id)
        assert replayed is not None
        return replayed

    async def release_stale(
        self,
        older_than: datetime,
        now: datetime | None = None,
    ) -> int:
        """释放认领时间早于 older_than 的消息（worker 崩溃恢复）

        释放不计入 attempts，消息立即可被重新认领。

        Returns:
            释放的消息数
        """
        cursor = await self._conn.execute(
            f"""
            UPDATE messages
            SET status = ?, claimed_by = NULL, claimed_at = NULL,
                retry_not_before = NULL, updated_at = ?
            WHERE status IN ({_placeholders(_CLAIMED)}) AND claimed_at < ?
            """,
            (
                MessageStatus.RETRYABLE.value,
                _ts(now or datetime.now(UTC)),
                *_CLAIMED,
                _ts(older_than),
            ),
        )
        await self._conn.commit()
        return cursor.rowcount

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        """将数据库行转换为 Message 模型"""
        data = dict(zip(_COLUMNS, row, strict=True))
        for column in _DATETIME_COLUMNS:
            if data[column] is not None:
                data[column] = datetime.fromisoformat(data[column])
        return Message(**data)
