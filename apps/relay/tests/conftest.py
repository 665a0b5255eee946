"""apps/relay 测试配置 -- 内存 Sink + 临时队列组装的管线"""

import pytest
from linerelay.relay.config import RelayConfig
from linerelay.relay.main import build_pipeline
from linerelay.sinks import MediaPayload, SinkConfig
from linerelay.sinks.clients import (
    InMemoryBlobClient,
    InMemoryLedgerClient,
    InMemoryMediaFetcher,
)


@pytest.fixture
def relay_config() -> RelayConfig:
    # 无抖动，退避时间可预期
    return RelayConfig(
        max_attempts=3,
        max_partition_misses=2,
        backoff_base_s=1.0,
        backoff_cap_s=60.0,
        backoff_jitter=0.0,
        worker_count=2,
        poll_interval_s=0.01,
    )


@pytest.fixture
def ledger_client() -> InMemoryLedgerClient:
    return InMemoryLedgerClient()


@pytest.fixture
def blob_client() -> InMemoryBlobClient:
    return InMemoryBlobClient()


@pytest.fixture
def fetcher() -> InMemoryMediaFetcher:
    fetcher = InMemoryMediaFetcher()
    for n in range(1, 21):
        fetcher.put(f"media-{n}", MediaPayload(data=f"payload-{n}".encode()))
    return fetcher


@pytest.fixture
def pipeline(store_group, relay_config, ledger_client, blob_client, fetcher, clock):
    return build_pipeline(
        store_group,
        SinkConfig(ledger_backend="memory", blob_backend="local"),
        relay_config,
        ledger_client=ledger_client,
        blob_client=blob_client,
        fetcher=fetcher,
        clock=clock,
    )
