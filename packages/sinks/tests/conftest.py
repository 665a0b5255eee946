"""packages/sinks 测试配置 -- 内存客户端与分区解析器 fixture"""

from collections import defaultdict

import pytest
from linerelay.sinks import MediaPayload, PartitionResolver
from linerelay.sinks.clients import (
    InMemoryBlobClient,
    InMemoryLedgerClient,
    InMemoryMediaFetcher,
)


class CountingSequences:
    """内存序号分配器：按消息幂等，按分区递增"""

    def __init__(self) -> None:
        self.by_message: dict[str, int] = {}
        self._last: dict[str, int] = defaultdict(int)

    async def allocate_sequence(self, message_id: str, partition_key: str) -> int:
        if message_id not in self.by_message:
            self._last[partition_key] += 1
            self.by_message[message_id] = self._last[partition_key]
        return self.by_message[message_id]


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
        fetcher.put(f"media-{n}", MediaPayload(data=f"payload-{n}".encode(), content_type="image/jpeg"))
    return fetcher


@pytest.fixture
def sequences() -> CountingSequences:
    return CountingSequences()


@pytest.fixture
def resolver(ledger_client, blob_client) -> PartitionResolver:
    return PartitionResolver(ledger_client, blob_client, blob_root="root")
