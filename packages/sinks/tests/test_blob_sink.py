"""BlobSink 测试

测试内容：
1. 对象名与扩展名
2. 上传路径 /{root}/{yyyy_MM_dd}/{sender}/{externalId}.{ext}
3. 重试时同名覆盖
4. 媒体下载失败与目录消失的分类
"""

from datetime import UTC, datetime

import pytest
from linerelay.core.models import MessageKind
from linerelay.sinks import (
    BlobSink,
    DeliveryOutcome,
    PartitionResolver,
    SinkKind,
    TransientSinkError,
    object_name_for,
)
from linerelay.sinks.clients import InMemoryBlobClient


class FlakyBlobClient(InMemoryBlobClient):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def upload(self, folder, object_name, payload):
        if self.failures > 0:
            self.failures -= 1
            self.upload_calls += 1
            raise TransientSinkError("HTTP 500")
        return await super().upload(folder, object_name, payload)


class TestObjectName:
    @pytest.mark.parametrize(
        "kind,file_name,expected",
        [
            (MessageKind.IMAGE, None, "ext-1.jpg"),
            (MessageKind.VIDEO, None, "ext-1.mp4"),
            (MessageKind.AUDIO, None, "ext-1.m4a"),
            (MessageKind.FILE, "report.PDF", "ext-1.pdf"),
            (MessageKind.FILE, "archive", "ext-1.bin"),
            (MessageKind.FILE, None, "ext-1.bin"),
            (MessageKind.FILE, "weird.$$$", "ext-1.bin"),
        ],
    )
    def test_extension(self, make_message, kind, file_name, expected):
        message = make_message(kind, external_id="ext-1", file_name=file_name)
        assert object_name_for(message) == expected


class TestBlobSink:
    async def test_applies_only_to_media(self, blob_client, fetcher, resolver, make_message):
        sink = BlobSink(blob_client, fetcher, resolver)
        assert sink.applies_to(make_message(MessageKind.TEXT)) is False
        assert sink.applies_to(make_message(MessageKind.LINK, content="https://x")) is False
        assert sink.applies_to(make_message(MessageKind.IMAGE)) is True

    async def test_is_done_after_checkpoint(self, blob_client, fetcher, resolver, make_message):
        sink = BlobSink(blob_client, fetcher, resolver)
        assert sink.is_done(make_message(MessageKind.IMAGE)) is False
        assert sink.is_done(make_message(MessageKind.IMAGE, blob_ref="memory:///x")) is True

    async def test_uploads_to_sender_folder(self, blob_client, fetcher, resolver, make_message):
        sink = BlobSink(blob_client, fetcher, resolver)
        message = make_message(
            MessageKind.IMAGE,
            external_id="line-42",
            media_ref="media-3",
            occurred_at=datetime(2024, 1, 5, 8, 30, tzinfo=UTC),
        )

        result = await sink.attempt(message)

        assert result.outcome == DeliveryOutcome.OK
        assert result.sink == SinkKind.BLOB
        assert result.blob_ref == "memory:///root/2024_01_05/alice/line-42.jpg"
        stored = blob_client.objects["/root/2024_01_05/alice/line-42.jpg"]
        assert stored.data == b"payload-3"

    async def test_retry_overwrites_same_object(self, fetcher, make_message):
        client = FlakyBlobClient(failures=1)
        sink = BlobSink(client, fetcher, PartitionResolver(blob_client=client))
        message = make_message(MessageKind.IMAGE)

        failed = await sink.attempt(message)
        assert failed.outcome == DeliveryOutcome.TRANSIENT

        ok = await sink.attempt(message)
        again = await sink.attempt(message)
        assert ok.blob_ref == again.blob_ref
        assert len(client.objects) == 1

    async def test_missing_media_is_permanent(self, blob_client, fetcher, resolver, make_message):
        sink = BlobSink(blob_client, fetcher, resolver)
        result = await sink.attempt(make_message(MessageKind.AUDIO, media_ref="gone"))

        assert result.outcome == DeliveryOutcome.PERMANENT
        assert blob_client.objects == {}

    async def test_vanished_folder_is_recreated(
        self, blob_client, fetcher, resolver, make_message
    ):
        sink = BlobSink(blob_client, fetcher, resolver)
        await sink.attempt(make_message(MessageKind.IMAGE))
        blob_client.drop_folder("/root/2024_01_05")

        result = await sink.attempt(make_message(MessageKind.IMAGE))

        assert result.is_ok
        assert "/root/2024_01_05/alice" in blob_client.folders
        assert len(blob_client.objects) == 1

    async def test_new_sender_after_day_folder_vanished(
        self, blob_client, fetcher, resolver, make_message
    ):
        sink = BlobSink(blob_client, fetcher, resolver)
        await sink.attempt(make_message(MessageKind.IMAGE, sender_name="alice"))
        blob_client.drop_folder("/root/2024_01_05")

        # 日期目录仍在缓存中，但 bob 目录从未解析过
        result = await sink.attempt(
            make_message(MessageKind.IMAGE, external_id="line-7", sender_name="bob")
        )

        assert result.is_ok
        assert "/root/2024_01_05" in blob_client.folders
        assert "/root/2024_01_05/bob/line-7.jpg" in blob_client.objects
