"""SinkConfig -- Sink 配置加载

从环境变量加载，只在组合根调用 load_sink_config()；
各组件通过构造参数接收配置，不做隐式全局查找。
"""

import os
from datetime import UTC, tzinfo
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from pydantic import BaseModel, Field, SecretStr, field_validator

log = structlog.get_logger()


class SinkConfig(BaseModel):
    """Sink 配置

    环境变量:
        LINERELAY_LEDGER_BACKEND: ledger 后端（sheets/memory）
        LINERELAY_BLOB_BACKEND: blob 后端（drive/local）
        LINERELAY_SHEETS_SPREADSHEET_ID: 目标表格 ID
        LINERELAY_SHEETS_TOKEN: Sheets API access token
        LINERELAY_DRIVE_TOKEN: Drive API access token
        LINERELAY_DRIVE_ROOT_FOLDER: Drive 中的上级目录 ID
        LINERELAY_LINE_CHANNEL_TOKEN: LINE channel access token
        LINERELAY_BLOB_ROOT: blob 根分区名
        LINERELAY_PARTITION_TZ: 分区日历日所用时区
        LINERELAY_CALL_TIMEOUT_S: 单次外部调用超时（秒）
    """

    ledger_backend: Literal["sheets", "memory"] = Field(
        default="sheets",
        description="ledger 后端",
    )
    blob_backend: Literal["drive", "local"] = Field(
        default="drive",
        description="blob 后端",
    )
    sheets_spreadsheet_id: str = Field(default="", description="目标表格 ID")
    sheets_token: SecretStr = Field(default=SecretStr(""), description="Sheets access token")
    sheets_base_url: str = Field(
        default="https://sheets.googleapis.com",
        description="Sheets API 基础 URL",
    )
    drive_token: SecretStr = Field(default=SecretStr(""), description="Drive access token")
    drive_base_url: str = Field(
        default="https://www.googleapis.com",
        description="Drive API 基础 URL",
    )
    drive_root_folder: str = Field(default="root", description="Drive 上级目录 ID")
    line_channel_token: SecretStr = Field(
        default=SecretStr(""),
        description="LINE channel access token",
    )
    line_data_base_url: str = Field(
        default="https://api-data.line.me",
        description="LINE 内容下载 API 基础 URL",
    )
    blob_root: str = Field(default="root", min_length=1, description="blob 根分区名")
    partition_tz: str = Field(default="UTC", description="分区日历日时区")
    call_timeout_s: float = Field(default=20.0, gt=0, description="单次外部调用超时（秒）")

    @field_validator("partition_tz")
    @classmethod
    def _check_tz(cls, value: str) -> str:
        if value == "UTC":
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"未知时区: {value}") from e
        return value

    @property
    def partition_zone(self) -> tzinfo:
        if self.partition_tz == "UTC":
            return UTC
        return ZoneInfo(self.partition_tz)


_STR_ENV = {
    "LINERELAY_LEDGER_BACKEND": "ledger_backend",
    "LINERELAY_BLOB_BACKEND": "blob_backend",
    "LINERELAY_SHEETS_SPREADSHEET_ID": "sheets_spreadsheet_id",
    "LINERELAY_SHEETS_BASE_URL": "sheets_base_url",
    "LINERELAY_DRIVE_BASE_URL": "drive_base_url",
    "LINERELAY_DRIVE_ROOT_FOLDER": "drive_root_folder",
    "LINERELAY_LINE_DATA_BASE_URL": "line_data_base_url",
    "LINERELAY_BLOB_ROOT": "blob_root",
    "LINERELAY_PARTITION_TZ": "partition_tz",
}

_SECRET_ENV = {
    "LINERELAY_SHEETS_TOKEN": "sheets_token",
    "LINERELAY_DRIVE_TOKEN": "drive_token",
    "LINERELAY_LINE_CHANNEL_TOKEN": "line_channel_token",
}


def load_sink_config() -> SinkConfig:
    """从环境变量加载 Sink 配置

    Returns:
        SinkConfig 实例
    """
    kwargs: dict = {}

    for env_var, field in _STR_ENV.items():
        if val := os.environ.get(env_var):
            kwargs[field] = val

    for env_var, field in _SECRET_ENV.items():
        if val := os.environ.get(env_var):
            kwargs[field] = SecretStr(val)

    if val := os.environ.get("LINERELAY_CALL_TIMEOUT_S"):
        try:
            kwargs["call_timeout_s"] = float(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="LINERELAY_CALL_TIMEOUT_S",
                value=val,
                fallback=20.0,
            )
            # 使用默认值，不阻塞启动

    return SinkConfig(**kwargs)
