"""Message / IngressEvent 模型测试"""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from linerelay.core.models import (
    EventType,
    IngressEvent,
    Message,
    MessageKind,
    MessageStatus,
)
from pydantic import ValidationError

_OCCURRED = datetime(2024, 1, 5, 10, 0, tzinfo=UTC)


def _message(**overrides) -> Message:
    fields = dict(
        message_id="01JTEST_MODEL_000000000001",
        external_id="ext-model-1",
        sender_id="U1",
        sender_name="alice",
        kind=MessageKind.TEXT,
        content="hi",
        occurred_at=_OCCURRED,
    )
    fields.update(overrides)
    return Message(**fields)


class TestMessage:
    def test_defaults(self):
        message = _message()
        assert message.status == MessageStatus.PENDING
        assert message.attempts == 0
        assert message.partition_misses == 0
        assert message.blob_ref is None
        assert message.requires_blob is False

    def test_naive_occurred_at_is_utc(self):
        message = _message(occurred_at=datetime(2024, 1, 5, 10, 0))
        assert message.occurred_at == _OCCURRED

    def test_aware_occurred_at_is_converted_to_utc(self):
        tokyo = timezone(timedelta(hours=9))
        message = _message(occurred_at=datetime(2024, 1, 5, 19, 0, tzinfo=tokyo))
        assert message.occurred_at == _OCCURRED
        assert message.occurred_at.tzinfo == UTC

    def test_text_requires_content(self):
        with pytest.raises(ValidationError):
            _message(content=None)

    def test_text_rejects_media_ref(self):
        with pytest.raises(ValidationError):
            _message(media_ref="m-1")

    def test_media_requires_media_ref(self):
        with pytest.raises(ValidationError):
            _message(kind=MessageKind.IMAGE, content=None)

    def test_media_message(self):
        message = _message(kind=MessageKind.IMAGE, content=None, media_ref="m-1")
        assert message.requires_blob is True

    def test_link_is_inline(self):
        message = _message(kind=MessageKind.LINK, content="https://example.com")
        assert message.requires_blob is False

    def test_empty_external_id_rejected(self):
        with pytest.raises(ValidationError):
            _message(external_id="")


class TestIngressEvent:
    def test_camel_case_text_event(self):
        event = IngressEvent.model_validate(
            {
                "type": "message",
                "externalId": "e-1",
                "senderId": "U1",
                "senderName": "alice",
                "kind": "text",
                "occurredAt": "2024-01-05T10:00:00Z",
                "text": "hi",
            }
        )
        message = event.to_message(received_at=_OCCURRED)
        assert message.external_id == "e-1"
        assert message.content == "hi"
        assert message.media_ref is None
        assert message.occurred_at == _OCCURRED
        assert message.received_at == _OCCURRED
        assert message.status == MessageStatus.PENDING
        assert len(message.message_id) == 26

    def test_snake_case_media_event(self):
        event = IngressEvent.model_validate(
            {
                "type": "message",
                "external_id": "e-2",
                "sender_id": "U1",
                "sender_name": "alice",
                "kind": "image",
                "occurred_at": "2024-01-05T10:00:00+00:00",
                "media_ref": "line-content-2",
            }
        )
        message = event.to_message()
        assert message.kind == MessageKind.IMAGE
        assert message.media_ref == "line-content-2"
        assert message.content is None

    def test_missing_fields_rejected(self):
        with pytest.raises(ValidationError, match="externalId|external_id"):
            IngressEvent.model_validate({"type": "message", "kind": "text", "text": "x"})

    def test_media_without_ref_rejected(self):
        with pytest.raises(ValidationError):
            IngressEvent.model_validate(
                {
                    "type": "message",
                    "externalId": "e-3",
                    "senderId": "U1",
                    "senderName": "alice",
                    "kind": "video",
                    "occurredAt": "2024-01-05T10:00:00Z",
                }
            )

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            IngressEvent.model_validate(
                {
                    "type": "message",
                    "externalId": "e-4",
                    "senderId": "U1",
                    "senderName": "alice",
                    "kind": "sticker",
                    "occurredAt": "2024-01-05T10:00:00Z",
                    "text": "x",
                }
            )

    def test_join_event_needs_no_message_fields(self):
        event = IngressEvent.model_validate({"type": "join"})
        assert event.type == EventType.JOIN
        with pytest.raises(ValueError):
            event.to_message()
