"""IngestService -- webhook 事件入站

校验事件格式，message 事件转换为 Message 并经 Deduplicator 准入队列。
准入完成即可向 webhook 调用方确认，投递由 Dispatcher 异步完成。
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

import structlog
from linerelay.core.exceptions import IngressValidationError
from linerelay.core.models import AdmitResult, EventType, IngestOutcome, IngressEvent
from linerelay.core.store import Deduplicator
from pydantic import ValidationError

from .retry_manager import Clock

log = structlog.get_logger()


class IngestService:
    """入站业务服务"""

    def __init__(self, deduplicator: Deduplicator, *, clock: Clock | None = None) -> None:
        self._deduplicator = deduplicator
        self._clock = clock or (lambda: datetime.now(UTC))

    async def ingest(self, raw: Mapping[str, Any]) -> IngestOutcome:
        """处理单个 webhook 事件

        Raises:
            IngressValidationError: 事件格式不合法
        """
        try:
            event = IngressEvent.model_validate(raw)
        except ValidationError as e:
            raise IngressValidationError(str(e), raw=dict(raw)) from e

        if event.type is not EventType.MESSAGE:
            log.debug("non_message_event_ignored", event_type=event.type.value)
            return IngestOutcome.IGNORED

        message = event.to_message(received_at=self._clock())
        result = await self._deduplicator.admit(message)
        if result is AdmitResult.DUPLICATE:
            return IngestOutcome.DUPLICATE
        return IngestOutcome.ACCEPTED

    async def ingest_body(self, body: Mapping[str, Any]) -> list[IngestOutcome]:
        """处理 webhook 请求体 {"events": [...]}

        单个事件格式错误只拒绝该事件，不影响同批其他事件。

        Raises:
            IngressValidationError: 请求体不含 events 列表
        """
        events = body.get("events") if isinstance(body, Mapping) else None
        if not isinstance(events, list):
            raise IngressValidationError("请求体缺少 events 列表", raw=body)

        outcomes: list[IngestOutcome] = []
        for raw in events:
            if not isinstance(raw, Mapping):
                log.warning("ingress_event_rejected", error="事件不是对象")
                outcomes.append(IngestOutcome.REJECTED)
                continue
            try:
                outcomes.append(await self.ingest(raw))
            except IngressValidationError as e:
                log.warning("ingress_event_rejected", error=str(e))
                outcomes.append(IngestOutcome.REJECTED)

        log.info(
            "webhook_body_ingested",
            total=len(outcomes),
            accepted=outcomes.count(IngestOutcome.ACCEPTED),
            duplicate=outcomes.count(IngestOutcome.DUPLICATE),
        )
        return outcomes
