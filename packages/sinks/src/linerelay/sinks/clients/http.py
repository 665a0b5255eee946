"""HTTP 边界错误分类 -- 将 httpx 响应/异常映射到 Sink 异常体系

429、5xx、连接与超时类错误 -> TransientSinkError
401、403（非限流）及其余 4xx -> PermanentSinkError
404 及外部系统的 "分区不存在" 文案 -> PartitionNotFoundError
"""

from collections.abc import Iterable

import httpx

from ..exceptions import (
    PartitionNotFoundError,
    PermanentSinkError,
    SinkError,
    TransientSinkError,
)

_TRANSIENT_STATUS = {408, 429, 500, 502, 503, 504}

# 403 中属于限流的 reason（Google API 以 403 返回部分限流错误）
_RATE_LIMIT_REASONS = ("ratelimitexceeded", "userratelimitexceeded", "quotaexceeded")


def _error_text(response: httpx.Response) -> str:
    try:
        return response.text[:500]
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return ""


def classify_response(
    response: httpx.Response,
    partition: str,
    not_found_markers: Iterable[str] = (),
) -> SinkError | None:
    """根据响应生成对应的 Sink 异常；2xx 返回 None

    Args:
        response: httpx 响应
        partition: 本次调用涉及的分区（用于 NotFound 描述）
        not_found_markers: 响应正文中表示分区不存在的文案（小写匹配）
    """
    if response.is_success:
        return None

    status = response.status_code
    text = _error_text(response)
    lowered = text.lower()
    summary = f"HTTP {status} {response.request.method} {response.request.url.path}: {text}"

    if status in _TRANSIENT_STATUS:
        return TransientSinkError(summary)
    if status == 403 and any(reason in lowered for reason in _RATE_LIMIT_REASONS):
        return TransientSinkError(summary)
    if status == 404 or any(marker in lowered for marker in not_found_markers):
        return PartitionNotFoundError(partition, summary)
    return PermanentSinkError(summary)


def raise_for_response(
    response: httpx.Response,
    partition: str,
    not_found_markers: Iterable[str] = (),
) -> None:
    """非 2xx 时抛出分类后的 Sink 异常"""
    error = classify_response(response, partition, not_found_markers)
    if error is not None:
        raise error


async def send(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
    """发送请求，传输层异常统一转换为 TransientSinkError"""
    try:
        return await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise TransientSinkError(f"{method} {url} 超时: {e}") from e
    except httpx.TransportError as e:
        raise TransientSinkError(f"{method} {url} 连接失败: {e}") from e
