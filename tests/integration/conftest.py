"""集成测试共享 fixture -- 内存 Sink + 临时 SQLite 队列 + 可推进时钟"""

from collections.abc import Callable

import pytest
from linerelay.core.models import MessageStatus
from linerelay.relay.config import RelayConfig
from linerelay.relay.main import Pipeline, build_pipeline
from linerelay.sinks import MediaPayload, SinkConfig
from linerelay.sinks.clients import (
    InMemoryBlobClient,
    InMemoryLedgerClient,
    InMemoryMediaFetcher,
)

PENDING_STATES = (MessageStatus.PENDING, MessageStatus.RETRYABLE)


@pytest.fixture
def integration_config() -> RelayConfig:
    return RelayConfig(
        max_attempts=3,
        max_partition_misses=2,
        backoff_base_s=1.0,
        backoff_cap_s=30.0,
        backoff_jitter=0.0,
        worker_count=4,
        poll_interval_s=0.01,
    )


@pytest.fixture
def media_fetcher() -> InMemoryMediaFetcher:
    fetcher = InMemoryMediaFetcher()
    for n in range(1, 51):
        fetcher.put(f"media-{n}", MediaPayload(data=f"payload-{n}".encode()))
    return fetcher


@pytest.fixture
def make_pipeline(store_group, integration_config, media_fetcher, clock) -> Callable[..., Pipeline]:
    """按需替换 ledger / blob 客户端装配管线"""

    def factory(ledger_client=None, blob_client=None) -> Pipeline:
        return build_pipeline(
            store_group,
            SinkConfig(ledger_backend="memory", blob_backend="local"),
            integration_config,
            ledger_client=ledger_client or InMemoryLedgerClient(),
            blob_client=blob_client or InMemoryBlobClient(),
            fetcher=media_fetcher,
            clock=clock,
        )

    return factory


@pytest.fixture
def settle(clock) -> Callable:
    """反复 drain 并推进时钟，直到没有待处理消息"""

    async def run(pipeline: Pipeline, max_rounds: int = 20) -> None:
        queue = pipeline.store_group.queue
        for _ in range(max_rounds):
            await pipeline.dispatcher.drain()
            counts = await queue.count_by_status()
            if not any(counts[status] for status in PENDING_STATES):
                return
            clock.advance(60)
        raise AssertionError("消息未在预期轮次内进入终态")

    return run
