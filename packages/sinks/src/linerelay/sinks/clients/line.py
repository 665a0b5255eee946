"""LineContentFetcher -- 通过 LINE Messaging API 下载媒体内容

媒体句柄即 LINE 消息 ID。内容被 LINE 删除（404/410）属于不可恢复错误。
"""

import httpx

from ..exceptions import PermanentSinkError
from ..models import MediaPayload
from .http import raise_for_response, send


class LineContentFetcher:
    """LINE 媒体内容下载器"""

    def __init__(
        self,
        channel_access_token: str,
        *,
        base_url: str = "https://api-data.line.me",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {channel_access_token}"}
        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def fetch(self, media_ref: str) -> MediaPayload:
        response = await send(
            self._http,
            "GET",
            f"{self._base}/v2/bot/message/{media_ref}/content",
            headers=self._headers,
        )
        if response.status_code in (404, 410):
            raise PermanentSinkError(f"媒体内容已不可用: {media_ref} (HTTP {response.status_code})")
        raise_for_response(response, media_ref)
        return MediaPayload(
            data=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
        )
