"""Relay 日志配置 -- structlog 与标准库 logging 共用一条处理链

LINERELAY_LOG_FORMAT=json 输出单行 JSON（采集到日志平台），
其他值输出便于本地排查的彩色控制台格式。
worker 通过 contextvars 绑定的 message_id / worker_id 会出现在每条日志中。
"""

import logging
import os

import structlog

# 每个请求都打 INFO 的第三方库
_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_format: str | None = None, log_level: str | None = None) -> None:
    """初始化日志；参数为空时读取 LINERELAY_LOG_FORMAT / LINERELAY_LOG_LEVEL

    Args:
        log_format: "json" 或 "dev"（默认）
        log_level: 标准 logging 级别名（默认 INFO）
    """
    log_format = log_format or os.environ.get("LINERELAY_LOG_FORMAT", "dev")
    log_level = log_level or os.environ.get("LINERELAY_LOG_LEVEL", "INFO")

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if log_format == "json":
        # JSON 中异常堆栈需先格式化为字符串字段
        pre_chain.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=_renderer(log_format),
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
