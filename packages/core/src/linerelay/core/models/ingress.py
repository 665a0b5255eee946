"""IngressEvent -- webhook 事件的入站格式

接受 camelCase（webhook 原始字段）或 snake_case 键。
仅 type=message 的事件会转换为 Message 进入管线。
"""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from ulid import ULID

from .enums import INLINE_KINDS, EventType, MessageKind
from .message import Message


class IngressEvent(BaseModel):
    """Webhook 事件

    message 事件必须提供 externalId、senderId、senderName、kind、occurredAt，
    以及 text（text/link）或 mediaRef（媒体类型）。
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: EventType = Field(description="事件类型")
    external_id: str | None = Field(default=None, description="来源消息 ID")
    sender_id: str | None = Field(default=None, description="发送者 ID")
    sender_name: str | None = Field(default=None, description="发送者名称")
    kind: MessageKind | None = Field(default=None, description="消息类型")
    occurred_at: datetime | None = Field(default=None, description="事件时间")
    text: str | None = Field(default=None, description="内联文本")
    media_ref: str | None = Field(default=None, description="媒体句柄")
    file_name: str | None = Field(default=None, description="原始文件名")

    @model_validator(mode="after")
    def _check_message_fields(self) -> "IngressEvent":
        if self.type is not EventType.MESSAGE:
            return self

        missing = [
            name
            for name in ("external_id", "sender_id", "sender_name", "kind", "occurred_at")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(f"message 事件缺少字段: {', '.join(missing)}")

        if self.kind in INLINE_KINDS:
            if self.text is None:
                raise ValueError(f"{self.kind} 消息缺少 text")
        elif not self.media_ref:
            raise ValueError(f"{self.kind} 消息缺少 mediaRef")
        return self

    def to_message(self, received_at: datetime | None = None) -> Message:
        """转换为待入队的 Message（status=PENDING）"""
        if self.type is not EventType.MESSAGE:
            raise ValueError(f"{self.type} 事件不进入管线")

        inline = self.kind in INLINE_KINDS
        now = received_at or datetime.now(UTC)
        return Message(
            message_id=str(ULID()),
            external_id=self.external_id,
            sender_id=self.sender_id,
            sender_name=self.sender_name,
            kind=self.kind,
            content=self.text if inline else None,
            media_ref=None if inline else self.media_ref,
            file_name=self.file_name,
            occurred_at=self.occurred_at,
            received_at=now,
            updated_at=now,
        )
