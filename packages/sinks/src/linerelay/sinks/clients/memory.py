"""内存实现的 ledger / blob 客户端与媒体下载器

用于本地运行与测试。记录每次写入的单调时钟时间，便于校验投递顺序。
drop_* 方法模拟外部系统中的带外删除。
"""

import time

from ..exceptions import PartitionExistsError, PartitionNotFoundError, PermanentSinkError
from ..models import LedgerRow, MediaPayload, PartitionRef


class InMemoryLedgerClient:
    """内存 ledger：分区名 -> 自顶向下的行列表"""

    def __init__(self) -> None:
        self.partitions: dict[str, list[LedgerRow]] = {}
        self.written_at: dict[tuple[str, int], int] = {}
        self.create_calls = 0

    async def find_partition(self, name: str) -> str | None:
        return name if name in self.partitions else None

    async def create_partition(self, name: str) -> str:
        self.create_calls += 1
        if name in self.partitions:
            raise PartitionExistsError(name)
        self.partitions[name] = []
        return name

    async def read_row_keys(self, partition: PartitionRef, offset: int, limit: int):
        rows = self._rows(partition.handle)
        return [row.sort_key for row in rows[offset : offset + limit]]

    async def insert_row(self, partition: PartitionRef, index: int, row: LedgerRow) -> None:
        self._rows(partition.handle).insert(index, row)
        self.written_at[(partition.handle, row.sequence_no)] = time.monotonic_ns()

    def rows(self, name: str) -> list[LedgerRow]:
        return list(self.partitions.get(name, []))

    def drop_partition(self, name: str) -> None:
        self.partitions.pop(name, None)

    def _rows(self, name: str) -> list[LedgerRow]:
        try:
            return self.partitions[name]
        except KeyError:
            raise PartitionNotFoundError(name) from None


class InMemoryBlobClient:
    """内存 blob store：目录路径即 handle，对象以完整路径为键"""

    def __init__(self) -> None:
        self.folders: set[str] = set()
        self.objects: dict[str, MediaPayload] = {}
        self.uploaded_at: dict[str, int] = {}
        self.upload_calls = 0

    async def find_folder(self, parent: str | None, name: str) -> str | None:
        path = f"{parent or ''}/{name}"
        return path if path in self.folders else None

    async def create_folder(self, parent: str | None, name: str) -> str:
        if parent is not None and parent not in self.folders:
            raise PartitionNotFoundError(parent)
        path = f"{parent or ''}/{name}"
        if path in self.folders:
            raise PartitionExistsError(path)
        self.folders.add(path)
        return path

    async def upload(self, folder: PartitionRef, object_name: str, payload: MediaPayload) -> str:
        self.upload_calls += 1
        if folder.handle not in self.folders:
            raise PartitionNotFoundError(folder.path)
        path = f"{folder.handle}/{object_name}"
        self.objects[path] = payload
        self.uploaded_at[path] = time.monotonic_ns()
        return f"memory://{path}"

    def drop_folder(self, path: str) -> None:
        """删除目录及其全部子目录和对象"""
        prefix = f"{path}/"
        self.folders = {f for f in self.folders if f != path and not f.startswith(prefix)}
        for key in [k for k in self.objects if k.startswith(prefix)]:
            del self.objects[key]


class InMemoryMediaFetcher:
    """按媒体句柄返回预先放入的内容"""

    def __init__(self, payloads: dict[str, MediaPayload] | None = None) -> None:
        self._payloads = dict(payloads or {})

    def put(self, media_ref: str, payload: MediaPayload) -> None:
        self._payloads[media_ref] = payload

    async def fetch(self, media_ref: str) -> MediaPayload:
        try:
            return self._payloads[media_ref]
        except KeyError:
            raise PermanentSinkError(f"媒体内容已不可用: {media_ref}") from None
