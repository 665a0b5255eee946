"""Dispatcher -- worker 池：认领消息并按顺序驱动各 Sink

每条消息的处理流程：
1. 依次检查每个 Sink：不适用或已完成（检查点）则跳过
2. 调用 Sink.attempt；失败交给 RetryManager 并结束本次处理
3. 成功则推进到 Sink 的检查点状态（BLOB_DONE / LEDGER_DONE）
4. 全部 Sink 完成后推进到 DELIVERED

Sink 顺序即依赖顺序：blob 在前，ledger 行引用 blob 链接。
worker 之间只通过队列的条件更新协调，同一消息同时只有一个持有者。
"""

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import structlog
from linerelay.core.models import Message, MessageStatus
from linerelay.core.store import SqliteMessageQueue
from linerelay.sinks import DeliveryResult, Sink
from ulid import ULID

from .retry_manager import Clock, RetryManager

log = structlog.get_logger()


class Dispatcher:
    """投递调度器"""

    def __init__(
        self,
        queue: SqliteMessageQueue,
        sinks: Sequence[Sink],
        retry_manager: RetryManager,
        *,
        worker_count: int = 4,
        poll_interval_s: float = 1.0,
        stale_claim_s: float = 600.0,
        clock: Clock | None = None,
        worker_prefix: str | None = None,
    ) -> None:
        """
        Args:
            queue: 持久化队列
            sinks: 按依赖顺序排列的 Sink（blob 在 ledger 之前）
            retry_manager: 失败处理
            worker_count: 并发 worker 数
            poll_interval_s: 无到期消息时的轮询间隔（秒）
            stale_claim_s: 认领超过该秒数未完成视为 worker 崩溃
            clock: 时钟（测试注入）
            worker_prefix: worker ID 前缀，默认按进程生成
        """
        self._queue = queue
        self._sinks = list(sinks)
        self._retry = retry_manager
        self._worker_count = worker_count
        self._poll_interval_s = poll_interval_s
        self._stale_claim_s = stale_claim_s
        self._clock = clock or (lambda: datetime.now(UTC))
        self._worker_prefix = worker_prefix or f"relay-{str(ULID())[-8:].lower()}"
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """释放遗留认领并启动 worker 池与维护任务"""
        if self._running:
            return
        self._running = True
        await self.recover_stale()

        for i in range(self._worker_count):
            worker_id = f"{self._worker_prefix}-{i}"
            self._tasks.append(
                asyncio.create_task(self._worker_loop(worker_id), name=worker_id)
            )
        self._tasks.append(
            asyncio.create_task(self._maintenance_loop(), name="stale-claim-recovery")
        )
        log.info("dispatcher_started", worker_count=self._worker_count)

    async def stop(self) -> None:
        """停止认领新消息，等待进行中的处理结束"""
        if not self._running:
            return
        self._running = False
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        log.info("dispatcher_stopped")

    async def recover_stale(self) -> int:
        """释放超时认领（崩溃的 worker 遗留），不计入 attempts"""
        now = self._clock()
        released = await self._queue.release_stale(
            now - timedelta(seconds=self._stale_claim_s),
            now=now,
        )
        if released:
            log.warning("stale_claims_released", count=released)
        return released

    async def run_once(self, worker_id: str) -> bool:
        """认领并处理一条到期消息

        Returns:
            True 表示处理了一条消息，False 表示当前没有到期消息
        """
        claimed = await self._queue.claim_batch(1, worker_id, now=self._clock())
        if not claimed:
            return False
        await self.process(claimed[0], worker_id)
        return True

    async def drain(self) -> int:
        """并发运行 worker 直到没有到期消息（单次批处理与测试使用）

        Returns:
            处理的消息数（含失败后重新排期的）
        """
        counts = await asyncio.gather(
            *(
                self._drain_worker(f"{self._worker_prefix}-drain-{i}")
                for i in range(self._worker_count)
            )
        )
        return sum(counts)

    async def process(self, message: Message, worker_id: str) -> Message:
        """处理一条已认领的消息，返回处理后的 Message"""
        with structlog.contextvars.bound_contextvars(
            message_id=message.message_id,
            external_id=message.external_id,
            worker_id=worker_id,
        ):
            for sink in self._sinks:
                if not sink.applies_to(message) or sink.is_done(message):
                    continue

                result = await self._attempt(sink, message)
                log.info(
                    "delivery_attempted",
                    sink=sink.kind.value,
                    outcome=result.outcome.value,
                    error=result.error,
                )
                if not result.is_ok:
                    return await self._retry.handle_failure(message, result)

                message = await self._queue.update_status(
                    message.message_id,
                    sink.checkpoint_status,
                    now=self._clock(),
                    **result.checkpoint_fields(),
                )

            delivered = await self._queue.update_status(
                message.message_id,
                MessageStatus.DELIVERED,
                now=self._clock(),
            )
            log.info(
                "message_delivered",
                attempts=delivered.attempts,
                blob_ref=delivered.blob_ref,
                ledger_seq=delivered.ledger_seq,
            )
            return delivered

    async def _attempt(self, sink: Sink, message: Message) -> DeliveryResult:
        """调用 Sink；未分类的异常按 Transient 计入"""
        try:
            return await sink.attempt(message)
        except Exception as e:
            log.exception("sink_unexpected_error", sink=sink.kind.value)
            return DeliveryResult.transient(sink.kind, f"{type(e).__name__}: {e}")

    async def _drain_worker(self, worker_id: str) -> int:
        processed = 0
        failed_last = False
        while True:
            try:
                if not await self.run_once(worker_id):
                    break
            except Exception:
                # 失败的消息保持认领，超时后由 recover_stale 释放；连续失败说明队列本身不可用
                log.exception("drain_iteration_failed", worker_id=worker_id)
                if failed_last:
                    break
                failed_last = True
                continue
            failed_last = False
            processed += 1
        return processed

    async def _worker_loop(self, worker_id: str) -> None:
        log.info("worker_started", worker_id=worker_id)
        while self._running:
            try:
                processed = await self.run_once(worker_id)
            except Exception:
                # 队列异常（如状态冲突）不终止 worker；认领超时后会被释放
                log.exception("worker_iteration_failed", worker_id=worker_id)
                processed = False
            if not processed:
                await asyncio.sleep(self._poll_interval_s)
        log.info("worker_stopped", worker_id=worker_id)

    async def _maintenance_loop(self) -> None:
        interval = max(self._stale_claim_s / 2, self._poll_interval_s)
        elapsed = 0.0
        while self._running:
            await asyncio.sleep(self._poll_interval_s)
            elapsed += self._poll_interval_s
            if elapsed < interval:
                continue
            elapsed = 0.0
            try:
                await self.recover_stale()
            except Exception:
                log.exception("stale_claim_recovery_failed")
