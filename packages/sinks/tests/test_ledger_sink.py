"""LedgerSink 测试

测试内容：
1. 行内容与分区
2. 分区内按 (occurred_at, sequence_no) 倒序，乱序到达也保持有序
3. 重复写入同一消息（相同序号）幂等
4. 超时、Transient、NotFound 分类
"""

import asyncio
import random
from datetime import UTC, datetime, timedelta

from linerelay.core.models import MessageKind
from linerelay.sinks import (
    DeliveryOutcome,
    LedgerSink,
    PartitionResolver,
    SinkKind,
    TransientSinkError,
)
from linerelay.sinks.clients import InMemoryLedgerClient

BASE = datetime(2024, 1, 5, 10, 0, tzinfo=UTC)


def _descending(keys) -> bool:
    return all(a >= b for a, b in zip(keys, keys[1:], strict=False))


class FlakyLedgerClient(InMemoryLedgerClient):
    """前 failures 次 insert_row 抛出 Transient"""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def insert_row(self, partition, index, row):
        if self.failures > 0:
            self.failures -= 1
            raise TransientSinkError("HTTP 503")
        await super().insert_row(partition, index, row)


class HangingLedgerClient(InMemoryLedgerClient):
    async def insert_row(self, partition, index, row):
        await asyncio.sleep(10)


class TestLedgerSink:
    async def test_writes_text_row(self, ledger_client, resolver, sequences, make_message):
        sink = LedgerSink(ledger_client, resolver, sequences)
        message = make_message(content="早上好", occurred_at=BASE)

        result = await sink.attempt(message)

        assert result.outcome == DeliveryOutcome.OK
        assert result.sink == SinkKind.LEDGER
        assert result.ledger_seq == 1
        assert result.partition.name == "2024_01_05"
        rows = ledger_client.rows("2024_01_05")
        assert len(rows) == 1
        assert rows[0].to_values() == [1, BASE.isoformat(), "alice", "text", "早上好"]

    async def test_media_row_references_blob(self, ledger_client, resolver, sequences, make_message):
        sink = LedgerSink(ledger_client, resolver, sequences)
        message = make_message(MessageKind.IMAGE, blob_ref="memory:///root/x.jpg")

        result = await sink.attempt(message)

        assert result.is_ok
        assert ledger_client.rows("2024_01_05")[0].body == "memory:///root/x.jpg"

    async def test_media_without_blob_is_permanent(
        self, ledger_client, resolver, sequences, make_message
    ):
        sink = LedgerSink(ledger_client, resolver, sequences)
        result = await sink.attempt(make_message(MessageKind.VIDEO))

        assert result.outcome == DeliveryOutcome.PERMANENT
        assert ledger_client.rows("2024_01_05") == []

    async def test_rows_stay_sorted_for_out_of_order_arrival(
        self, ledger_client, resolver, sequences, make_message
    ):
        sink = LedgerSink(ledger_client, resolver, sequences, scan_page_size=3)
        offsets = list(range(25))
        random.Random(7).shuffle(offsets)
        # 重复的时间戳靠序号区分
        messages = [
            make_message(occurred_at=BASE + timedelta(seconds=(n // 2) * 10)) for n in offsets
        ]

        for message in messages:
            assert (await sink.attempt(message)).is_ok

        keys = [row.sort_key for row in ledger_client.rows("2024_01_05")]
        assert len(keys) == 25
        assert _descending(keys)

    async def test_newest_message_inserted_at_top(
        self, ledger_client, resolver, sequences, make_message
    ):
        sink = LedgerSink(ledger_client, resolver, sequences)
        for n in range(5):
            await sink.attempt(make_message(occurred_at=BASE + timedelta(minutes=n)))

        newest = make_message(content="latest", occurred_at=BASE + timedelta(hours=1))
        await sink.attempt(newest)
        assert ledger_client.rows("2024_01_05")[0].body == "latest"

    async def test_messages_partitioned_by_day(
        self, ledger_client, resolver, sequences, make_message
    ):
        sink = LedgerSink(ledger_client, resolver, sequences)
        await sink.attempt(make_message(occurred_at=datetime(2024, 1, 5, 23, 59, tzinfo=UTC)))
        await sink.attempt(make_message(occurred_at=datetime(2024, 1, 6, 0, 1, tzinfo=UTC)))

        assert len(ledger_client.rows("2024_01_05")) == 1
        assert len(ledger_client.rows("2024_01_06")) == 1
        assert ledger_client.rows("2024_01_06")[0].sequence_no == 1

    async def test_redelivery_is_idempotent(self, ledger_client, resolver, sequences, make_message):
        sink = LedgerSink(ledger_client, resolver, sequences)
        message = make_message()

        first = await sink.attempt(message)
        again = await sink.attempt(message)

        assert first.is_ok and again.is_ok
        assert first.ledger_seq == again.ledger_seq
        assert len(ledger_client.rows("2024_01_05")) == 1

    async def test_transient_failure_reuses_sequence(self, sequences, make_message):
        client = FlakyLedgerClient(failures=1)
        resolver = PartitionResolver(client)
        sink = LedgerSink(client, resolver, sequences)
        message = make_message()

        failed = await sink.attempt(message)
        assert failed.outcome == DeliveryOutcome.TRANSIENT
        assert "503" in failed.error

        ok = await sink.attempt(message)
        assert ok.is_ok
        assert ok.ledger_seq == 1
        assert [r.sequence_no for r in client.rows("2024_01_05")] == [1]

    async def test_timeout_is_transient(self, sequences, make_message):
        client = HangingLedgerClient()
        resolver = PartitionResolver(client)
        sink = LedgerSink(client, resolver, sequences, timeout_s=0.05)

        result = await sink.attempt(make_message())

        assert result.outcome == DeliveryOutcome.TRANSIENT
        assert "超时" in result.error

    async def test_vanished_partition_is_recreated_once(
        self, ledger_client, resolver, sequences, make_message
    ):
        sink = LedgerSink(ledger_client, resolver, sequences)
        await sink.attempt(make_message())
        ledger_client.drop_partition("2024_01_05")

        result = await sink.attempt(make_message())

        assert result.is_ok
        assert ledger_client.create_calls == 2
        assert len(ledger_client.rows("2024_01_05")) == 1

    async def test_persistent_not_found_is_reported(self, sequences, make_message):
        class VanishingClient(InMemoryLedgerClient):
            async def read_row_keys(self, partition, offset, limit):
                self.partitions.pop(partition.handle, None)
                return await super().read_row_keys(partition, offset, limit)

        client = VanishingClient()
        resolver = PartitionResolver(client)
        sink = LedgerSink(client, resolver, sequences)

        result = await sink.attempt(make_message())

        assert result.outcome == DeliveryOutcome.NOT_FOUND
        assert client.create_calls == 2

    async def test_concurrent_inserts_keep_order(self, sequences, make_message):
        class YieldingClient(InMemoryLedgerClient):
            """每次调用都让出事件循环"""

            async def read_row_keys(self, partition, offset, limit):
                await asyncio.sleep(0)
                return await super().read_row_keys(partition, offset, limit)

            async def insert_row(self, partition, index, row):
                await asyncio.sleep(0)
                await super().insert_row(partition, index, row)

        client = YieldingClient()
        sink = LedgerSink(client, PartitionResolver(client), sequences, scan_page_size=4)
        offsets = list(range(20))
        random.Random(3).shuffle(offsets)
        messages = [make_message(occurred_at=BASE + timedelta(seconds=n)) for n in offsets]

        results = await asyncio.gather(*(sink.attempt(m) for m in messages))

        assert all(r.is_ok for r in results)
        keys = [row.sort_key for row in client.rows("2024_01_05")]
        assert len(keys) == 20
        assert _descending(keys)

    async def test_partition_locks_released_after_delivery(self, sequences, make_message):
        client = FlakyLedgerClient(failures=1)
        sink = LedgerSink(client, PartitionResolver(client), sequences)
        messages = [
            make_message(occurred_at=BASE + timedelta(days=day, minutes=n))
            for day in range(5)
            for n in range(3)
        ]

        results = await asyncio.gather(*(sink.attempt(m) for m in messages))

        assert sum(1 for r in results if r.outcome == DeliveryOutcome.TRANSIENT) == 1
        # 每天一个分区，投递结束后不保留锁
        assert sink._insert_locks == {}
        assert sink._lock_users == {}
