"""配置常量模块 -- 可通过环境变量覆盖

包含队列数据库路径、本地 blob 目录、错误信息截断长度等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("LINERELAY_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取队列 SQLite 数据库路径"""
    return os.environ.get(
        "LINERELAY_DB_PATH",
        str(_get_base_dir() / "sqlite" / "linerelay.db"),
    )


def get_local_blob_dir() -> Path:
    """获取本地 blob 存储目录（blob_backend=local 时使用）"""
    return Path(
        os.environ.get(
            "LINERELAY_LOCAL_BLOB_DIR",
            str(_get_base_dir() / "blobs"),
        )
    )


# last_error 最大字符数（超出部分截断，避免异常堆栈撑大队列表）
LAST_ERROR_MAX_LENGTH: int = int(
    os.environ.get("LINERELAY_LAST_ERROR_MAX_LENGTH", "2000")
)

# 消息预览截断长度（日志用）
MESSAGE_PREVIEW_LENGTH: int = 80
