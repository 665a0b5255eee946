"""RelayConfig -- 重试策略与 worker 池配置

从环境变量加载，只在组合根调用 load_relay_config()。
max_attempts 限制重试风暴；worker_count 限制对外部 API 的并发压力；
backoff 参数在延迟与第三方限流风险之间权衡。
"""

import os

import structlog
from pydantic import BaseModel, Field, model_validator

log = structlog.get_logger()


class RelayConfig(BaseModel):
    """Relay 配置

    环境变量:
        LINERELAY_MAX_ATTEMPTS: Transient 失败上限（默认 5）
        LINERELAY_MAX_PARTITION_MISSES: 分区消失的独立额度（默认 3）
        LINERELAY_BACKOFF_BASE_S: 退避基数（秒，默认 2）
        LINERELAY_BACKOFF_CAP_S: 退避上限（秒，默认 300）
        LINERELAY_BACKOFF_JITTER: 抖动比例 0~1（默认 0.2）
        LINERELAY_WORKER_COUNT: worker 数（默认 4）
        LINERELAY_POLL_INTERVAL_S: 空闲轮询间隔（秒，默认 1）
        LINERELAY_STALE_CLAIM_S: 认领超时释放阈值（秒，默认 600）
    """

    max_attempts: int = Field(default=5, ge=1, description="Transient 失败上限")
    max_partition_misses: int = Field(default=3, ge=0, description="分区消失独立额度")
    backoff_base_s: float = Field(default=2.0, gt=0, description="退避基数（秒）")
    backoff_cap_s: float = Field(default=300.0, gt=0, description="退避上限（秒）")
    backoff_jitter: float = Field(default=0.2, ge=0, le=1, description="抖动比例")
    worker_count: int = Field(default=4, ge=1, description="worker 数")
    poll_interval_s: float = Field(default=1.0, gt=0, description="空闲轮询间隔（秒）")
    stale_claim_s: int = Field(default=600, ge=1, description="认领超时释放阈值（秒）")

    @model_validator(mode="after")
    def _check_backoff(self) -> "RelayConfig":
        if self.backoff_cap_s < self.backoff_base_s:
            raise ValueError("backoff_cap_s 不能小于 backoff_base_s")
        return self


_INT_ENV = {
    "LINERELAY_MAX_ATTEMPTS": "max_attempts",
    "LINERELAY_MAX_PARTITION_MISSES": "max_partition_misses",
    "LINERELAY_WORKER_COUNT": "worker_count",
    "LINERELAY_STALE_CLAIM_S": "stale_claim_s",
}

_FLOAT_ENV = {
    "LINERELAY_BACKOFF_BASE_S": "backoff_base_s",
    "LINERELAY_BACKOFF_CAP_S": "backoff_cap_s",
    "LINERELAY_BACKOFF_JITTER": "backoff_jitter",
    "LINERELAY_POLL_INTERVAL_S": "poll_interval_s",
}


def load_relay_config() -> RelayConfig:
    """从环境变量加载 Relay 配置

    无法解析的数值记录 warning 并使用默认值，不阻塞启动。

    Returns:
        RelayConfig 实例
    """
    kwargs: dict = {}
    defaults = RelayConfig()

    for mapping, cast in ((_INT_ENV, int), (_FLOAT_ENV, float)):
        for env_var, field in mapping.items():
            val = os.environ.get(env_var)
            if not val:
                continue
            try:
                kwargs[field] = cast(val)
            except ValueError:
                log.warning(
                    "invalid_relay_config",
                    env_var=env_var,
                    value=val,
                    fallback=getattr(defaults, field),
                )

    return RelayConfig(**kwargs)
