"""linerelay Sinks -- 外部 Sink 适配层

packages/sinks 的公开接口导出：分区解析、Sink 适配器、结果分类与异常体系。
"""

from .base import Sink
from .blob import BlobSink, object_name_for
from .config import SinkConfig, load_sink_config

# 异常
from .exceptions import (
    PartitionExistsError,
    PartitionNotFoundError,
    PermanentSinkError,
    SinkError,
    TransientSinkError,
)
from .ledger import LedgerSink
from .models import (
    DeliveryOutcome,
    DeliveryResult,
    LedgerRow,
    MediaPayload,
    PartitionRef,
    SinkKind,
)
from .partition import PartitionResolver, partition_name, sanitize_segment

__all__ = [
    "Sink",
    "LedgerSink",
    "BlobSink",
    "object_name_for",
    "PartitionResolver",
    "partition_name",
    "sanitize_segment",
    "SinkKind",
    "DeliveryOutcome",
    "DeliveryResult",
    "PartitionRef",
    "LedgerRow",
    "MediaPayload",
    "SinkConfig",
    "load_sink_config",
    "SinkError",
    "TransientSinkError",
    "PermanentSinkError",
    "PartitionNotFoundError",
    "PartitionExistsError",
]
