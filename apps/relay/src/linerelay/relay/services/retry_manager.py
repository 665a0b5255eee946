"""RetryManager -- 失败分类后的重试调度与死信判定

Transient：attempts + 1，按指数退避（带抖动）设置 retry_not_before；
达到 max_attempts 后进入 DEAD_LETTERED。
Permanent：attempts + 1 后直接进入 DEAD_LETTERED。
NotFound（Sink 内已重试一次仍失败）：先消耗独立的 partition_misses 额度，
不计入 attempts；额度用尽后按 Transient 计数。
"""

import random
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog
from linerelay.core.models import Message, MessageStatus
from linerelay.core.store import SqliteMessageQueue
from linerelay.sinks import DeliveryOutcome, DeliveryResult

from ..config import RelayConfig

log = structlog.get_logger()

Clock = Callable[[], datetime]

# 2 ** 63 远超任何合理上限，避免浮点溢出
_MAX_EXPONENT = 63


def compute_backoff(
    attempts: int,
    base_s: float,
    cap_s: float,
    jitter: float = 0.0,
    rng: random.Random | None = None,
) -> float:
    """第 attempts 次失败后的退避秒数

    min(base * 2^attempts, cap)，再加减 jitter 比例的随机抖动，结果不小于 0。
    """
    delay = min(base_s * (2 ** min(attempts, _MAX_EXPONENT)), cap_s)
    if jitter > 0:
        spread = delay * jitter
        delay += (rng or random).uniform(-spread, spread)
    return max(delay, 0.0)


class RetryManager:
    """根据 DeliveryResult 推进消息到 RETRYABLE 或 DEAD_LETTERED"""

    def __init__(
        self,
        queue: SqliteMessageQueue,
        config: RelayConfig,
        *,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._queue = queue
        self._config = config
        self._clock = clock or (lambda: datetime.now(UTC))
        self._rng = rng or random.Random()

    def backoff(self, attempts: int) -> float:
        return compute_backoff(
            attempts,
            self._config.backoff_base_s,
            self._config.backoff_cap_s,
            self._config.backoff_jitter,
            self._rng,
        )

    async def handle_failure(self, message: Message, result: DeliveryResult) -> Message:
        """处理一次失败的投递尝试

        Args:
            message: 认领时（或最近一次检查点后）的消息快照
            result: 非 OK 的投递结果

        Returns:
            更新后的 Message（RETRYABLE 或 DEAD_LETTERED）
        """
        if result.is_ok:
            raise ValueError("handle_failure 只接受失败的投递结果")

        now = self._clock()
        error = f"{result.sink.value}: {result.error}"

        if result.outcome is DeliveryOutcome.PERMANENT:
            return await self._dead_letter(message, message.attempts + 1, error, now)

        changes: dict = {}
        if result.outcome is DeliveryOutcome.NOT_FOUND:
            misses = message.partition_misses + 1
            changes["partition_misses"] = misses
            if misses <= self._config.max_partition_misses:
                delay = self.backoff(misses)
                updated = await self._queue.update_status(
                    message.message_id,
                    MessageStatus.RETRYABLE,
                    error,
                    now=now,
                    retry_not_before=now + timedelta(seconds=delay),
                    **changes,
                )
                log.warning(
                    "partition_miss_rescheduled",
                    sink=result.sink.value,
                    partition_misses=misses,
                    delay_s=round(delay, 3),
                )
                return updated

        attempts = message.attempts + 1
        if attempts >= self._config.max_attempts:
            return await self._dead_letter(
                message,
                attempts,
                f"retries exhausted after {attempts} attempts: {error}",
                now,
                **changes,
            )

        delay = self.backoff(attempts)
        updated = await self._queue.update_status(
            message.message_id,
            MessageStatus.RETRYABLE,
            error,
            now=now,
            attempts=attempts,
            retry_not_before=now + timedelta(seconds=delay),
            **changes,
        )
        log.warning(
            "delivery_retry_scheduled",
            sink=result.sink.value,
            outcome=result.outcome.value,
            attempts=attempts,
            delay_s=round(delay, 3),
            error=result.error,
        )
        return updated

    async def _dead_letter(
        self,
        message: Message,
        attempts: int,
        error: str,
        now: datetime,
        **changes,
    ) -> Message:
        updated = await self._queue.update_status(
            message.message_id,
            MessageStatus.DEAD_LETTERED,
            error,
            now=now,
            attempts=attempts,
            **changes,
        )
        log.error(
            "message_dead_lettered",
            attempts=attempts,
            error=error,
        )
        return updated
