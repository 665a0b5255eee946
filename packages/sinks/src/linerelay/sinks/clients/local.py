"""LocalBlobClient -- 本地文件系统 blob store

目录层级与 blob 分区一致：{root_dir}/{root}/{yyyy_MM_dd}/{sender}/{object}。
handle 为相对 root_dir 的 POSIX 路径，共享链接为 file:// URI。
"""

from pathlib import Path

from ..exceptions import (
    PartitionExistsError,
    PartitionNotFoundError,
    TransientSinkError,
)
from ..models import MediaPayload, PartitionRef


class LocalBlobClient:
    """本地目录 blob 客户端"""

    def __init__(self, root_dir: str | Path) -> None:
        self._root_dir = Path(root_dir)
        self._root_dir.mkdir(parents=True, exist_ok=True)

    async def find_folder(self, parent: str | None, name: str) -> str | None:
        handle = self._handle(parent, name)
        return handle if (self._root_dir / handle).is_dir() else None

    async def create_folder(self, parent: str | None, name: str) -> str:
        handle = self._handle(parent, name)
        try:
            (self._root_dir / handle).mkdir()
        except FileExistsError:
            raise PartitionExistsError(handle) from None
        except FileNotFoundError:
            raise PartitionNotFoundError(parent or str(self._root_dir)) from None
        return handle

    async def upload(self, folder: PartitionRef, object_name: str, payload: MediaPayload) -> str:
        folder_path = self._root_dir / folder.handle
        if not folder_path.is_dir():
            raise PartitionNotFoundError(folder.path)
        file_path = folder_path / object_name
        try:
            file_path.write_bytes(payload.data)
        except OSError as e:
            raise TransientSinkError(f"写入失败: {file_path} -- {e}") from e
        return file_path.resolve().as_uri()

    @staticmethod
    def _handle(parent: str | None, name: str) -> str:
        return f"{parent}/{name}" if parent else name
