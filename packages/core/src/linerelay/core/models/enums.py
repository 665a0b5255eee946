"""枚举定义 -- 消息状态机与投递相关枚举

包含 MessageStatus 状态机、MessageKind、EventType、AdmitResult、IngestOutcome，
以及 VALID_TRANSITIONS 合法流转映射、TERMINAL_STATES 终态集合和
CLAIMABLE_STATES 可认领状态集合。
"""

from enum import StrEnum


class MessageStatus(StrEnum):
    """消息投递状态机"""

    PENDING = "PENDING"
    IN_FLIGHT = "IN_FLIGHT"

    # 检查点状态：worker 仍持有认领
    BLOB_DONE = "BLOB_DONE"
    LEDGER_DONE = "LEDGER_DONE"

    RETRYABLE = "RETRYABLE"

    # 终态
    DELIVERED = "DELIVERED"
    DEAD_LETTERED = "DEAD_LETTERED"


class MessageKind(StrEnum):
    """消息类型"""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    LINK = "link"


# 内联类型：正文直接写入 ledger，不经过 blob store
INLINE_KINDS: frozenset[MessageKind] = frozenset({MessageKind.TEXT, MessageKind.LINK})


class EventType(StrEnum):
    """Webhook 事件类型，仅 message 进入管线"""

    MESSAGE = "message"
    JOIN = "join"
    LEAVE = "leave"


class AdmitResult(StrEnum):
    """去重准入结果"""

    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"


class IngestOutcome(StrEnum):
    """单个 webhook 事件的入站结果"""

    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    REJECTED = "rejected"


_CHECKPOINT_EXITS = {
    MessageStatus.RETRYABLE,
    MessageStatus.DEAD_LETTERED,
}

# 合法状态流转；DEAD_LETTERED -> PENDING 的人工重放不在此表内
VALID_TRANSITIONS: dict[MessageStatus, set[MessageStatus]] = {
    MessageStatus.PENDING: {MessageStatus.IN_FLIGHT},
    MessageStatus.IN_FLIGHT: {
        MessageStatus.BLOB_DONE,
        MessageStatus.LEDGER_DONE,
        *_CHECKPOINT_EXITS,
    },
    MessageStatus.BLOB_DONE: {MessageStatus.LEDGER_DONE, *_CHECKPOINT_EXITS},
    MessageStatus.LEDGER_DONE: {MessageStatus.DELIVERED, *_CHECKPOINT_EXITS},
    MessageStatus.RETRYABLE: {MessageStatus.IN_FLIGHT},
    # 终态不可再流转
    MessageStatus.DELIVERED: set(),
    MessageStatus.DEAD_LETTERED: set(),
}

TERMINAL_STATES: frozenset[MessageStatus] = frozenset(
    {MessageStatus.DELIVERED, MessageStatus.DEAD_LETTERED}
)

CLAIMABLE_STATES: frozenset[MessageStatus] = frozenset(
    {MessageStatus.PENDING, MessageStatus.RETRYABLE}
)

# worker 持有认领期间的状态（崩溃恢复时据此释放）
CLAIMED_STATES: frozenset[MessageStatus] = frozenset(
    {MessageStatus.IN_FLIGHT, MessageStatus.BLOB_DONE, MessageStatus.LEDGER_DONE}
)


def validate_transition(from_status: MessageStatus, to_status: MessageStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
