"""Sink 数据模型

PartitionRef、DeliveryResult（一次投递尝试的结果，只记日志不持久化）、
LedgerRow、MediaPayload。
"""

from datetime import UTC, datetime
from enum import StrEnum

from linerelay.core.models import MessageKind
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import PartitionNotFoundError, SinkError


class SinkKind(StrEnum):
    """Sink 类型"""

    LEDGER = "ledger"
    BLOB = "blob"


class DeliveryOutcome(StrEnum):
    """投递结果分类"""

    OK = "ok"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    NOT_FOUND = "not_found"


class PartitionRef(BaseModel):
    """已确认存在的分区引用

    key 是分区缓存键；handle 是外部系统中的标识（sheetId、folderId、目录路径）。
    """

    model_config = ConfigDict(frozen=True)

    sink: SinkKind = Field(description="所属 Sink")
    key: str = Field(description="缓存键")
    name: str = Field(description="分区名（ledger 为 yyyy_MM_dd，blob 为末级目录名）")
    path: str = Field(description="规范路径")
    handle: str = Field(default="", description="外部系统中的标识")


class DeliveryResult(BaseModel):
    """一次投递尝试的结果"""

    sink: SinkKind = Field(description="投递目标")
    outcome: DeliveryOutcome = Field(description="结果分类")
    error: str | None = Field(default=None, description="错误描述")
    partition: PartitionRef | None = Field(default=None, description="涉及的分区")
    blob_ref: str | None = Field(default=None, description="blob 共享链接")
    ledger_seq: int | None = Field(default=None, description="写入的 ledger 序号")
    completed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="完成时间",
    )

    @property
    def is_ok(self) -> bool:
        return self.outcome is DeliveryOutcome.OK

    def checkpoint_fields(self) -> dict:
        """成功结果中需随检查点状态一起持久化的字段"""
        fields = {}
        if self.blob_ref is not None:
            fields["blob_ref"] = self.blob_ref
        if self.ledger_seq is not None:
            fields["ledger_seq"] = self.ledger_seq
        return fields

    @classmethod
    def ok(cls, sink: SinkKind, **kwargs) -> "DeliveryResult":
        return cls(sink=sink, outcome=DeliveryOutcome.OK, **kwargs)

    @classmethod
    def transient(cls, sink: SinkKind, error: str, **kwargs) -> "DeliveryResult":
        return cls(sink=sink, outcome=DeliveryOutcome.TRANSIENT, error=error, **kwargs)

    @classmethod
    def permanent(cls, sink: SinkKind, error: str, **kwargs) -> "DeliveryResult":
        return cls(sink=sink, outcome=DeliveryOutcome.PERMANENT, error=error, **kwargs)

    @classmethod
    def from_error(
        cls,
        sink: SinkKind,
        error: SinkError,
        partition: PartitionRef | None = None,
    ) -> "DeliveryResult":
        """将边界异常转换为结果分类"""
        if isinstance(error, PartitionNotFoundError):
            outcome = DeliveryOutcome.NOT_FOUND
        elif error.recoverable:
            outcome = DeliveryOutcome.TRANSIENT
        else:
            outcome = DeliveryOutcome.PERMANENT
        return cls(
            sink=sink,
            outcome=outcome,
            error=f"{type(error).__name__}: {error}",
            partition=partition,
        )


class LedgerRow(BaseModel):
    """ledger 中的一行：[序号, occurred_at, 发送者, 类型, 正文或 blob 链接]"""

    sequence_no: int = Field(ge=1, description="分区内序号")
    occurred_at: datetime = Field(description="事件时间（UTC）")
    sender_name: str = Field(description="发送者名称")
    kind: MessageKind = Field(description="消息类型")
    body: str = Field(description="文本正文或 blob 共享链接")

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.occurred_at, self.sequence_no)

    def to_values(self) -> list:
        return [
            self.sequence_no,
            self.occurred_at.isoformat(),
            self.sender_name,
            self.kind.value,
            self.body,
        ]


class MediaPayload(BaseModel):
    """已下载的媒体内容"""

    data: bytes = Field(description="二进制内容")
    content_type: str = Field(
        default="application/octet-stream",
        description="MIME 类型",
    )
