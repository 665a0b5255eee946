"""Sink 适配器基类 -- 统一的 deliver 能力

每个外部调用都在超时内等待，超时转换为 Transient；适配器自身不做重试，
唯一例外是分区消失（NotFound）：失效缓存后重新解析并投递一次。
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import TypeVar

import structlog
from linerelay.core.models import Message, MessageStatus

from .exceptions import SinkError, TransientSinkError
from .models import DeliveryOutcome, DeliveryResult, PartitionRef, SinkKind
from .partition import PartitionResolver

log = structlog.get_logger()

T = TypeVar("T")


class Sink(ABC):
    """Sink 适配器抽象

    Dispatcher 只依赖 applies_to / is_done / attempt，不关心背后的外部系统。
    """

    kind: SinkKind
    # 投递成功后消息进入的检查点状态
    checkpoint_status: MessageStatus

    def __init__(self, resolver: PartitionResolver, *, timeout_s: float = 20.0) -> None:
        """
        Args:
            resolver: 分区解析器（所有 worker 共享）
            timeout_s: 单次外部调用超时（秒）
        """
        self._resolver = resolver
        self._timeout_s = timeout_s

    def applies_to(self, message: Message) -> bool:
        """该消息是否需要投递到本 Sink"""
        return True

    def is_done(self, message: Message) -> bool:
        """之前的尝试是否已完成本 Sink 的投递（检查点）"""
        return False

    @abstractmethod
    async def resolve(self, message: Message) -> PartitionRef:
        """解析消息所属分区"""

    @abstractmethod
    async def deliver(self, message: Message, partition: PartitionRef) -> DeliveryResult:
        """投递到指定分区；边界异常必须在此转换为 DeliveryResult"""

    async def attempt(self, message: Message) -> DeliveryResult:
        """解析分区并投递；分区消失时失效缓存并重试一次"""
        result = await self._attempt_once(message)
        if result.outcome is DeliveryOutcome.NOT_FOUND:
            if result.partition is not None:
                self._resolver.invalidate(result.partition)
            log.warning(
                "partition_vanished_retrying",
                sink=self.kind.value,
                error=result.error,
            )
            result = await self._attempt_once(message)
        return result

    async def _attempt_once(self, message: Message) -> DeliveryResult:
        try:
            partition = await self._call(self.resolve(message), "resolve")
        except SinkError as e:
            return DeliveryResult.from_error(self.kind, e)
        return await self.deliver(message, partition)

    async def _call(self, awaitable: Awaitable[T], operation: str) -> T:
        """在超时内等待一次外部调用，超时转换为 TransientSinkError"""
        try:
            return await asyncio.wait_for(awaitable, self._timeout_s)
        except TimeoutError as e:
            raise TransientSinkError(
                f"{self.kind.value} {operation} 超时（{self._timeout_s}s）"
            ) from e
