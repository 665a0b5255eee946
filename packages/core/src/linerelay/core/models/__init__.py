"""linerelay Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    CLAIMABLE_STATES,
    CLAIMED_STATES,
    INLINE_KINDS,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    AdmitResult,
    EventType,
    IngestOutcome,
    MessageKind,
    MessageStatus,
    validate_transition,
)
from .ingress import IngressEvent
from .message import Message, ensure_utc

__all__ = [
    # 枚举
    "MessageStatus",
    "MessageKind",
    "EventType",
    "AdmitResult",
    "IngestOutcome",
    "INLINE_KINDS",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "CLAIMABLE_STATES",
    "CLAIMED_STATES",
    "validate_transition",
    # Message
    "Message",
    "ensure_utc",
    # Ingress
    "IngressEvent",
]
