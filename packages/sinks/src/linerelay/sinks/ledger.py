"""LedgerSink -- 每条消息在当日分区写入一行

分区内行按 (occurred_at, sequence_no) 倒序排列（最新在顶部）。
写入位置通过自顶向下分页扫描确定：最常见的 "最新消息" 在读取第一页后
即插入到第 0 行，不做追加后重排，分区增长后依然高效。

序号随消息持久化，重试时复用；若目标位置已有相同键的行，视为此前已写入成功。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from linerelay.core.models import Message, MessageStatus

from .base import Sink
from .exceptions import SinkError
from .models import DeliveryResult, LedgerRow, PartitionRef, SinkKind
from .partition import PartitionResolver
from .protocols import LedgerClient, SequenceAllocator

log = structlog.get_logger()

DEFAULT_SCAN_PAGE_SIZE = 50


class LedgerSink(Sink):
    """表格型 ledger 适配器"""

    kind = SinkKind.LEDGER
    checkpoint_status = MessageStatus.LEDGER_DONE

    def __init__(
        self,
        client: LedgerClient,
        resolver: PartitionResolver,
        sequences: SequenceAllocator,
        *,
        timeout_s: float = 20.0,
        scan_page_size: int = DEFAULT_SCAN_PAGE_SIZE,
    ) -> None:
        super().__init__(resolver, timeout_s=timeout_s)
        self._client = client
        self._sequences = sequences
        self._scan_page_size = scan_page_size
        self._insert_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def resolve(self, message: Message) -> PartitionRef:
        day = self._resolver.day_for(message.occurred_at)
        return await self._resolver.resolve_ledger_partition(day)

    async def deliver(self, message: Message, partition: PartitionRef) -> DeliveryResult:
        if message.requires_blob and message.blob_ref is None:
            # 媒体消息的 ledger 行必须引用已上传的 blob
            return DeliveryResult.permanent(
                self.kind,
                "媒体消息缺少 blob_ref，无法写入 ledger",
                partition=partition,
            )

        try:
            seq = await self._sequences.allocate_sequence(message.message_id, partition.key)
            row = LedgerRow(
                sequence_no=seq,
                occurred_at=message.occurred_at,
                sender_name=message.sender_name,
                kind=message.kind,
                body=message.blob_ref if message.requires_blob else message.content,
            )
            # 扫描与插入之间分区不能被本进程的其他 worker 修改
            async with self._partition_lock(partition.key):
                index = await self._find_insert_index(partition, row)
                if index is not None:
                    await self._call(
                        self._client.insert_row(partition, index, row),
                        "insert_row",
                    )
            if index is None:
                log.info(
                    "ledger_row_already_present",
                    partition=partition.name,
                    sequence_no=seq,
                )
            else:
                log.info(
                    "ledger_row_inserted",
                    partition=partition.name,
                    sequence_no=seq,
                    index=index,
                )
        except SinkError as e:
            return DeliveryResult.from_error(self.kind, e, partition)

        return DeliveryResult.ok(self.kind, partition=partition, ledger_seq=seq)

    async def _find_insert_index(self, partition: PartitionRef, row: LedgerRow) -> int | None:
        """自顶向下找到第一行键小于新行的位置；遇到相同键返回 None"""
        new_key = row.sort_key
        offset = 0
        while True:
            keys = await self._call(
                self._client.read_row_keys(partition, offset, self._scan_page_size),
                "read_row_keys",
            )
            for i, key in enumerate(keys):
                if key == new_key:
                    return None
                if key < new_key:
                    return offset + i
            if len(keys) < self._scan_page_size:
                return offset + len(keys)
            offset += len(keys)

    @asynccontextmanager
    async def _partition_lock(self, key: str) -> AsyncIterator[None]:
        """分区级锁；最后一个使用者退出后移除，避免按日累积"""
        lock = self._insert_locks.get(key)
        if lock is None:
            lock = self._insert_locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._insert_locks[key]
