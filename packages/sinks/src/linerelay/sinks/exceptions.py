"""Sink 异常体系

边界客户端抛出以下异常，由 Sink 适配器在边界处转换为 DeliveryResult。
Dispatcher 与 RetryManager 只看到结果分类，不接触具体外部错误。
"""


class SinkError(Exception):
    """Sink 包基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.recoverable = recoverable


class TransientSinkError(SinkError):
    """可重试错误：网络超时、限流、5xx 等"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=True)


class PermanentSinkError(SinkError):
    """不可重试错误：授权失败、载荷被外部系统拒绝等，立即进入死信"""

    def __init__(self, message: str) -> None:
        super().__init__(message, recoverable=False)


class PartitionNotFoundError(SinkError):
    """分区已不存在（被带外删除），触发分区缓存失效"""

    def __init__(self, partition: str, detail: str = "") -> None:
        """
        Args:
            partition: 消失的分区名或路径
            detail: 外部系统返回的原始描述
        """
        message = f"分区不存在: {partition}"
        if detail:
            message = f"{message} -- {detail}"
        super().__init__(message, recoverable=True)
        self.partition = partition


class PartitionExistsError(SinkError):
    """创建分区时发现已存在（并发 worker 抢先创建），调用方应重新查找"""

    def __init__(self, partition: str) -> None:
        super().__init__(f"分区已存在: {partition}", recoverable=True)
        self.partition = partition
