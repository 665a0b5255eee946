"""PartitionResolver -- 分区解析与惰性创建

将 (occurred_at, sender_name) 确定性映射到 ledger 分区与 blob 路径，
首次遇到时向外部系统确认或创建分区并缓存。

缓存不按时间过期，仅在 Sink 报告分区消失时失效。
并发 worker 解析同一个新分区时共享同一次 check-then-create（按键 single-flight），
不存在跨分区的全局锁；外部创建的 "已存在" 竞争被容忍。
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime, tzinfo

import structlog

from .exceptions import PartitionExistsError, PartitionNotFoundError, TransientSinkError
from .models import PartitionRef, SinkKind
from .protocols import BlobClient, LedgerClient

log = structlog.get_logger()

PARTITION_DATE_FORMAT = "%Y_%m_%d"

_UNSAFE_SEGMENT_CHARS = re.compile(r'[\x00-\x1f\x7f/\\:*?"<>|]')
_SEGMENT_MAX_LENGTH = 100


def partition_name(day: date) -> str:
    """日期的规范分区名：定宽可排序的 yyyy_MM_dd"""
    return day.strftime(PARTITION_DATE_FORMAT)


def sanitize_segment(name: str) -> str:
    """将发送者名称等转换为安全的路径段

    替换路径分隔符与控制字符，去除首尾空白和点，空结果回退为 "unknown"。
    """
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("_", name).strip().strip(".")
    cleaned = cleaned[:_SEGMENT_MAX_LENGTH].strip()
    return cleaned or "unknown"


class PartitionResolver:
    """ledger / blob 分区解析器"""

    def __init__(
        self,
        ledger_client: LedgerClient | None = None,
        blob_client: BlobClient | None = None,
        *,
        blob_root: str = "root",
        blob_root_parent: str | None = None,
        zone: tzinfo = UTC,
    ) -> None:
        """
        Args:
            ledger_client: ledger 客户端（不投递 ledger 时可为 None）
            blob_client: blob 客户端（不投递 blob 时可为 None）
            blob_root: blob 根分区名
            blob_root_parent: 根分区在外部系统中的上级标识
            zone: 计算日历日所用时区
        """
        self._ledger = ledger_client
        self._blob = blob_client
        self._blob_root = sanitize_segment(blob_root)
        self._blob_root_parent = blob_root_parent
        self._zone = zone
        self._cache: dict[str, PartitionRef] = {}
        self._inflight: dict[str, asyncio.Future[PartitionRef]] = {}

    def day_for(self, occurred_at: datetime) -> date:
        """事件时间在配置时区下的日历日"""
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=UTC)
        return occurred_at.astimezone(self._zone).date()

    def blob_object_path(self, partition: PartitionRef, object_name: str) -> str:
        """/{root}/{yyyy_MM_dd}/{sender}/{object_name}"""
        return f"{partition.path}/{object_name}"

    async def resolve_ledger_partition(self, day: date) -> PartitionRef:
        """解析（必要时创建）某日的 ledger 分区"""
        if self._ledger is None:
            raise RuntimeError("未配置 ledger 客户端")
        name = partition_name(day)
        key = f"{SinkKind.LEDGER}:{name}"
        ledger = self._ledger

        async def create() -> PartitionRef:
            handle = await self._find_or_create(
                lambda: ledger.find_partition(name),
                lambda: ledger.create_partition(name),
                name,
            )
            return PartitionRef(
                sink=SinkKind.LEDGER,
                key=key,
                name=name,
                path=name,
                handle=handle,
            )

        return await self._get_or_create(key, create)

    async def resolve_blob_partition(self, day: date, sender_name: str) -> PartitionRef:
        """解析（必要时逐级创建）/{root}/{day}/{sender} 目录"""
        if self._blob is None:
            raise RuntimeError("未配置 blob 客户端")
        root = await self._resolve_blob_folder(
            parent=None,
            name=self._blob_root,
            path=f"/{self._blob_root}",
        )
        day_ref = await self._resolve_blob_folder(
            parent=root,
            name=partition_name(day),
            path=f"{root.path}/{partition_name(day)}",
        )
        sender = sanitize_segment(sender_name)
        return await self._resolve_blob_folder(
            parent=day_ref,
            name=sender,
            path=f"{day_ref.path}/{sender}",
        )

    def invalidate(self, partition: PartitionRef) -> None:
        """分区消失后使缓存失效

        blob 分区连同其上级目录一起失效（任何一级都可能被带外删除）。
        """
        keys = [partition.key]
        if partition.sink is SinkKind.BLOB:
            segments = partition.path.strip("/").split("/")
            for depth in range(1, len(segments)):
                keys.append(f"{SinkKind.BLOB}:/{'/'.join(segments[:depth])}")
        for key in keys:
            self._cache.pop(key, None)
        log.info("partition_cache_invalidated", keys=keys)

    def cached(self, key: str) -> PartitionRef | None:
        return self._cache.get(key)

    async def _resolve_blob_folder(
        self,
        parent: PartitionRef | None,
        name: str,
        path: str,
    ) -> PartitionRef:
        key = f"{SinkKind.BLOB}:{path}"
        blob = self._blob
        assert blob is not None
        parent_handle = parent.handle if parent is not None else self._blob_root_parent

        async def create() -> PartitionRef:
            handle = await self._find_or_create(
                lambda: blob.find_folder(parent_handle, name),
                lambda: blob.create_folder(parent_handle, name),
                path,
            )
            return PartitionRef(
                sink=SinkKind.BLOB,
                key=key,
                name=name,
                path=path,
                handle=handle,
            )

        try:
            return await self._get_or_create(key, create)
        except PartitionNotFoundError:
            # 上级目录已被带外删除：连同其祖先一起失效，下次解析时重建
            if parent is not None:
                self.invalidate(parent)
            raise

    async def _get_or_create(
        self,
        key: str,
        create: Callable[[], Awaitable[PartitionRef]],
    ) -> PartitionRef:
        """按键 single-flight：同一键只有一个进行中的解析，其余调用方等待其结果"""
        ref = self._cache.get(key)
        if ref is not None:
            return ref

        future = self._inflight.get(key)
        if future is None:

            async def run() -> PartitionRef:
                resolved = await create()
                self._cache[key] = resolved
                return resolved

            future = asyncio.ensure_future(run())
            self._inflight[key] = future
            future.add_done_callback(lambda f, k=key: self._drop_inflight(k, f))

        # shield：等待方超时取消时，不取消共享的解析
        return await asyncio.shield(future)

    def _drop_inflight(self, key: str, future: asyncio.Future) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        # 异常已传播给等待方；此处读取一次，避免 "never retrieved" 告警
        if not future.cancelled():
            future.exception()

    @staticmethod
    async def _find_or_create(
        find: Callable[[], Awaitable[str | None]],
        create: Callable[[], Awaitable[str]],
        label: str,
    ) -> str:
        handle = await find()
        if handle is not None:
            return handle
        try:
            handle = await create()
            log.info("partition_created", partition=label)
            return handle
        except PartitionExistsError:
            # 并发 worker 抢先创建：重新查找
            log.debug("partition_create_race", partition=label)
            handle = await find()
            if handle is None:
                raise TransientSinkError(f"分区创建竞争后仍未找到: {label}") from None
            return handle
