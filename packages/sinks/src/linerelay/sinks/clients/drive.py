"""DriveBlobClient -- Google Drive v3 REST 实现的 blob 客户端

目录即分区（/{root}/{yyyy_MM_dd}/{sender}），handle 为 Drive 文件 ID。
上传时若目录下已有同名对象则覆盖内容，保证重试不产生重复文件。
"""

import json

import httpx
import structlog
from ulid import ULID

from ..models import MediaPayload, PartitionRef
from .http import raise_for_response, send

log = structlog.get_logger()

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

_NOT_FOUND_MARKERS = ("file not found",)


def _quote(value: str) -> str:
    """Drive 查询字符串中的单引号转义"""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveBlobClient:
    """Google Drive blob 客户端"""

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = "https://www.googleapis.com",
        default_parent: str = "root",
        share_publicly: bool = True,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            access_token: OAuth access token
            base_url: API 基础 URL
            default_parent: 根分区的上级目录 ID（"root" 为 My Drive）
            share_publicly: 上传后是否授予 "anyone with link" 只读权限
            http_client: 外部注入的 httpx 客户端
        """
        base = base_url.rstrip("/")
        self._files_url = f"{base}/drive/v3/files"
        self._upload_url = f"{base}/upload/drive/v3/files"
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._default_parent = default_parent
        self._share_publicly = share_publicly
        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def find_folder(self, parent: str | None, name: str) -> str | None:
        parent_id = parent or self._default_parent
        return await self._find(
            f"name = '{_quote(name)}' and mimeType = '{FOLDER_MIME_TYPE}' "
            f"and '{_quote(parent_id)}' in parents and trashed = false",
            label=name,
        )

    async def create_folder(self, parent: str | None, name: str) -> str:
        parent_id = parent or self._default_parent
        response = await send(
            self._http,
            "POST",
            self._files_url,
            params={"fields": "id"},
            json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
            headers=self._headers,
        )
        raise_for_response(response, parent_id, _NOT_FOUND_MARKERS)
        return response.json()["id"]

    async def upload(
        self,
        folder: PartitionRef,
        object_name: str,
        payload: MediaPayload,
    ) -> str:
        existing = await self._find(
            f"name = '{_quote(object_name)}' and '{_quote(folder.handle)}' in parents "
            "and trashed = false",
            label=object_name,
        )
        if existing is not None:
            response = await send(
                self._http,
                "PATCH",
                f"{self._upload_url}/{existing}",
                params={"uploadType": "media", "fields": "id,webViewLink"},
                content=payload.data,
                headers={**self._headers, "Content-Type": payload.content_type},
            )
            log.debug("drive_object_overwritten", name=object_name, file_id=existing)
        else:
            body, content_type = self._multipart(
                {"name": object_name, "parents": [folder.handle]},
                payload,
            )
            response = await send(
                self._http,
                "POST",
                self._upload_url,
                params={"uploadType": "multipart", "fields": "id,webViewLink"},
                content=body,
                headers={**self._headers, "Content-Type": content_type},
            )
        raise_for_response(response, folder.path, _NOT_FOUND_MARKERS)

        data = response.json()
        file_id = data["id"]
        if self._share_publicly:
            await self._share(file_id, folder.path)
        return data.get("webViewLink") or f"https://drive.google.com/file/d/{file_id}/view"

    async def _find(self, query: str, label: str) -> str | None:
        response = await send(
            self._http,
            "GET",
            self._files_url,
            params={"q": query, "fields": "files(id)", "pageSize": 1},
            headers=self._headers,
        )
        raise_for_response(response, label, _NOT_FOUND_MARKERS)
        files = response.json().get("files", [])
        return files[0]["id"] if files else None

    async def _share(self, file_id: str, label: str) -> None:
        response = await send(
            self._http,
            "POST",
            f"{self._files_url}/{file_id}/permissions",
            json={"role": "reader", "type": "anyone"},
            headers=self._headers,
        )
        raise_for_response(response, label, _NOT_FOUND_MARKERS)

    @staticmethod
    def _multipart(metadata: dict, payload: MediaPayload) -> tuple[bytes, str]:
        """构造 multipart/related 上传体（元数据 + 内容）"""
        boundary = f"linerelay-{ULID()}"
        head = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata, ensure_ascii=False)}\r\n"
            f"--{boundary}\r\n"
            f"Content-Type: {payload.content_type}\r\n\r\n"
        ).encode("utf-8")
        tail = f"\r\n--{boundary}--\r\n".encode()
        return head + payload.data + tail, f"multipart/related; boundary={boundary}"
