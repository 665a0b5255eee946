"""Deduplicator -- 基于持久化唯一约束的去重准入

准入即一次原子 insert-if-absent（external_id 唯一索引），
不做先查后插，重启后依旧有效。重复投递是正常结果，不是错误。
"""

import structlog

from ..config import MESSAGE_PREVIEW_LENGTH
from ..models.enums import AdmitResult
from ..models.message import Message
from .queue_store import SqliteMessageQueue

log = structlog.get_logger()


class Deduplicator:
    """去重准入"""

    def __init__(self, queue: SqliteMessageQueue) -> None:
        self._queue = queue

    async def admit(self, message: Message) -> AdmitResult:
        """准入消息

        Returns:
            ACCEPTED -- 已写入队列（status=PENDING）
            DUPLICATE -- external_id 已存在，原记录保持不变
        """
        inserted = await self._queue.enqueue(message)
        if not inserted:
            log.debug(
                "duplicate_message_skipped",
                external_id=message.external_id,
            )
            return AdmitResult.DUPLICATE

        log.info(
            "message_accepted",
            message_id=message.message_id,
            external_id=message.external_id,
            kind=message.kind.value,
            sender_name=message.sender_name,
            preview=(message.content or "")[:MESSAGE_PREVIEW_LENGTH],
        )
        return AdmitResult.ACCEPTED
