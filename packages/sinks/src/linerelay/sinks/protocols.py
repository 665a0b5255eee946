"""边界 Protocol 接口定义

定义 ledger / blob 外部系统客户端、媒体下载器与序号分配器的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
客户端抛出 linerelay.sinks.exceptions 中的异常。
"""

from datetime import datetime
from typing import Protocol

from .models import LedgerRow, MediaPayload, PartitionRef


class LedgerClient(Protocol):
    """表格型 ledger 客户端（每天一个分区，行按 occurred_at 倒序）"""

    async def find_partition(self, name: str) -> str | None:
        """查找分区，存在时返回外部标识，否则 None"""
        ...

    async def create_partition(self, name: str) -> str:
        """创建分区并返回外部标识；已存在时抛出 PartitionExistsError"""
        ...

    async def read_row_keys(
        self,
        partition: PartitionRef,
        offset: int,
        limit: int,
    ) -> list[tuple[datetime, int]]:
        """自顶向下读取 [offset, offset+limit) 行的 (occurred_at, sequence_no)"""
        ...

    async def insert_row(self, partition: PartitionRef, index: int, row: LedgerRow) -> None:
        """在第 index 行（0 为最顶部数据行）插入一行"""
        ...


class BlobClient(Protocol):
    """层级型 blob store 客户端"""

    async def find_folder(self, parent: str | None, name: str) -> str | None:
        """在 parent 下查找名为 name 的目录，返回外部标识或 None"""
        ...

    async def create_folder(self, parent: str | None, name: str) -> str:
        """在 parent 下创建目录并返回外部标识；已存在时抛出 PartitionExistsError"""
        ...

    async def upload(
        self,
        folder: PartitionRef,
        object_name: str,
        payload: MediaPayload,
    ) -> str:
        """上传（同名覆盖）并返回可访问的共享链接"""
        ...


class MediaFetcher(Protocol):
    """按媒体句柄下载二进制内容"""

    async def fetch(self, media_ref: str) -> MediaPayload:
        ...


class SequenceAllocator(Protocol):
    """分区内序号分配（同一消息重复调用返回同一序号）"""

    async def allocate_sequence(self, message_id: str, partition_key: str) -> int:
        ...
