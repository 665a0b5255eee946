"""Message Domain Model -- 管线的工作单元

Message 由入站时创建（PENDING），由持久化队列独占，
worker 认领后在一次尝试期间转移所有权。消息永不删除。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import INLINE_KINDS, MessageKind, MessageStatus


def ensure_utc(value: datetime) -> datetime:
    """naive 时间按 UTC 解释，aware 时间统一转换为 UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Message(BaseModel):
    """Message 数据模型

    content / media_ref 恰好设置其一，由 kind 决定：
    text/link 携带 content，其余媒体类型携带 media_ref。
    """

    message_id: str = Field(description="内部唯一标识，ULID 格式")
    external_id: str = Field(min_length=1, description="来源系统消息 ID，去重键")
    sender_id: str = Field(description="发送者 ID")
    sender_name: str = Field(description="发送者名称")
    kind: MessageKind = Field(description="消息类型")
    content: str | None = Field(default=None, description="文本正文")
    media_ref: str | None = Field(default=None, description="未下载的媒体句柄")
    file_name: str | None = Field(default=None, description="原始文件名（file 类型）")
    occurred_at: datetime = Field(description="来源事件时间，用于分区与排序")
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="入站时间",
    )
    status: MessageStatus = Field(default=MessageStatus.PENDING, description="当前状态")
    attempts: int = Field(default=0, ge=0, description="失败尝试次数")
    partition_misses: int = Field(default=0, ge=0, description="分区消失次数")
    last_error: str | None = Field(default=None, description="最近一次错误")
    retry_not_before: datetime | None = Field(default=None, description="最早重试时间")
    claimed_by: str | None = Field(default=None, description="当前认领的 worker")
    claimed_at: datetime | None = Field(default=None, description="认领时间")
    blob_ref: str | None = Field(default=None, description="blob 共享链接（检查点）")
    ledger_seq: int | None = Field(default=None, ge=1, description="分区内序号")
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="更新时间",
    )

    @field_validator("occurred_at", "received_at", "updated_at")
    @classmethod
    def _normalize_tz(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_payload(self) -> "Message":
        if self.kind in INLINE_KINDS:
            if self.content is None or self.media_ref is not None:
                raise ValueError(f"{self.kind} 消息必须且只能携带 content")
        elif self.media_ref is None or self.content is not None:
            raise ValueError(f"{self.kind} 消息必须且只能携带 media_ref")
        return self

    @property
    def requires_blob(self) -> bool:
        """媒体类型需要先上传 blob"""
        return self.kind not in INLINE_KINDS
