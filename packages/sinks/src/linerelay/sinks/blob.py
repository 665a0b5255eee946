"""BlobSink -- 媒体载荷上传到 /{root}/{yyyy_MM_dd}/{sender}/

对象名由 external_id 与类型对应扩展名确定，重试时同名覆盖而非重复。
成功后返回的共享链接写入消息检查点，随后 ledger 行引用它。
"""

import re
from pathlib import PurePosixPath

import structlog
from linerelay.core.models import Message, MessageKind, MessageStatus

from .base import Sink
from .exceptions import SinkError
from .models import DeliveryResult, PartitionRef, SinkKind
from .partition import PartitionResolver, sanitize_segment
from .protocols import BlobClient, MediaFetcher

log = structlog.get_logger()

_EXTENSIONS: dict[MessageKind, str] = {
    MessageKind.IMAGE: "jpg",
    MessageKind.VIDEO: "mp4",
    MessageKind.AUDIO: "m4a",
}

_FALLBACK_EXTENSION = "bin"
_SAFE_EXTENSION = re.compile(r"^[a-z0-9]{1,10}$")


def object_name_for(message: Message) -> str:
    """{external_id}.{ext}；file 类型沿用原始文件扩展名"""
    ext = _EXTENSIONS.get(message.kind)
    if ext is None:
        suffix = PurePosixPath(message.file_name or "").suffix.lstrip(".").lower()
        ext = suffix if _SAFE_EXTENSION.match(suffix) else _FALLBACK_EXTENSION
    return f"{sanitize_segment(message.external_id)}.{ext}"


class BlobSink(Sink):
    """层级型 blob store 适配器，仅处理非内联类型"""

    kind = SinkKind.BLOB
    checkpoint_status = MessageStatus.BLOB_DONE

    def __init__(
        self,
        client: BlobClient,
        fetcher: MediaFetcher,
        resolver: PartitionResolver,
        *,
        timeout_s: float = 20.0,
    ) -> None:
        super().__init__(resolver, timeout_s=timeout_s)
        self._client = client
        self._fetcher = fetcher

    def applies_to(self, message: Message) -> bool:
        return message.requires_blob

    def is_done(self, message: Message) -> bool:
        return message.blob_ref is not None

    async def resolve(self, message: Message) -> PartitionRef:
        day = self._resolver.day_for(message.occurred_at)
        return await self._resolver.resolve_blob_partition(day, message.sender_name)

    async def deliver(self, message: Message, partition: PartitionRef) -> DeliveryResult:
        object_name = object_name_for(message)
        try:
            payload = await self._call(self._fetcher.fetch(message.media_ref), "fetch")
            link = await self._call(
                self._client.upload(partition, object_name, payload),
                "upload",
            )
        except SinkError as e:
            return DeliveryResult.from_error(self.kind, e, partition)

        log.info(
            "blob_uploaded",
            path=self._resolver.blob_object_path(partition, object_name),
            size=len(payload.data),
        )
        return DeliveryResult.ok(self.kind, partition=partition, blob_ref=link)
