"""Core 异常体系"""


class PipelineError(Exception):
    """linerelay 基础异常"""


class IngressValidationError(PipelineError):
    """入站事件格式错误，入队前拒绝，不重试"""

    def __init__(self, message: str, raw: object = None) -> None:
        super().__init__(message)
        self.raw = raw


class MessageStatusConflictError(PipelineError):
    """状态更新冲突：非法流转或并发竞争失败"""

    def __init__(self, message_id: str, expected: str | None, target: str) -> None:
        super().__init__(
            f"消息 {message_id} 状态冲突: 当前={expected} 目标={target}"
        )
        self.message_id = message_id
        self.expected = expected
        self.target = target


class MessageNotFoundError(PipelineError):
    """队列中不存在的消息"""

    def __init__(self, message_id: str) -> None:
        super().__init__(f"消息不存在: {message_id}")
        self.message_id = message_id
