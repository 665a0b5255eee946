"""SheetsLedgerClient -- Google Sheets v4 REST 实现的 ledger 客户端

一个表格（spreadsheet）对应整个 ledger，每天一个工作表（sheet）作为分区。
第 1 行为表头，数据行从第 2 行开始，自顶向下按 occurred_at 倒序。
插入一行通过同一个 batchUpdate 中的 insertDimension + updateCells 完成。
"""

from datetime import UTC, datetime

import httpx
import structlog
from linerelay.core.models import ensure_utc

from ..exceptions import PartitionExistsError, PermanentSinkError
from ..models import LedgerRow, PartitionRef
from .http import classify_response, raise_for_response, send

log = structlog.get_logger()

HEADER_ROW = ["seq", "occurred_at", "sender", "kind", "content"]

# 数据行之前的表头行数
_HEADER_ROWS = 1

_NOT_FOUND_MARKERS = ("unable to parse range", "no grid with id")

# 无法解析的行按 "比任何行都新" 处理，扫描会越过它
_UNPARSEABLE_KEY = (datetime.max.replace(tzinfo=UTC), 0)


def _cell(value: int | str) -> dict:
    if isinstance(value, int):
        return {"userEnteredValue": {"numberValue": value}}
    return {"userEnteredValue": {"stringValue": value}}


class SheetsLedgerClient:
    """Google Sheets ledger 客户端"""

    def __init__(
        self,
        spreadsheet_id: str,
        access_token: str,
        *,
        base_url: str = "https://sheets.googleapis.com",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            spreadsheet_id: 目标表格 ID
            access_token: OAuth access token（获取与刷新不在本组件职责内）
            base_url: API 基础 URL
            http_client: 外部注入的 httpx 客户端（测试用 MockTransport）
        """
        self._spreadsheet_id = spreadsheet_id
        self._base = f"{base_url.rstrip('/')}/v4/spreadsheets/{spreadsheet_id}"
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def find_partition(self, name: str) -> str | None:
        response = await send(
            self._http,
            "GET",
            self._base,
            params={"fields": "sheets.properties(sheetId,title)"},
            headers=self._headers,
        )
        error = classify_response(response, name)
        if error is not None:
            # 表格本身 404 说明配置错误，而不是分区消失
            raise PermanentSinkError(str(error)) if response.status_code == 404 else error

        for sheet in response.json().get("sheets", []):
            props = sheet.get("properties", {})
            if props.get("title") == name:
                return str(props["sheetId"])
        return None

    async def create_partition(self, name: str) -> str:
        response = await send(
            self._http,
            "POST",
            f"{self._base}:batchUpdate",
            json={"requests": [{"addSheet": {"properties": {"title": name}}}]},
            headers=self._headers,
        )
        if response.status_code == 400 and "already exists" in response.text.lower():
            raise PartitionExistsError(name)
        raise_for_response(response, name)

        sheet_id = response.json()["replies"][0]["addSheet"]["properties"]["sheetId"]

        header = await send(
            self._http,
            "PUT",
            f"{self._base}/values/{name}!A1:E1",
            params={"valueInputOption": "RAW"},
            json={"values": [HEADER_ROW]},
            headers=self._headers,
        )
        raise_for_response(header, name, _NOT_FOUND_MARKERS)
        return str(sheet_id)

    async def read_row_keys(
        self,
        partition: PartitionRef,
        offset: int,
        limit: int,
    ) -> list[tuple[datetime, int]]:
        first = _HEADER_ROWS + 1 + offset
        last = first + limit - 1
        response = await send(
            self._http,
            "GET",
            f"{self._base}/values/{partition.name}!A{first}:B{last}",
            params={"valueRenderOption": "UNFORMATTED_VALUE"},
            headers=self._headers,
        )
        raise_for_response(response, partition.name, _NOT_FOUND_MARKERS)

        keys: list[tuple[datetime, int]] = []
        for row in response.json().get("values", []):
            try:
                # 手工编辑的行可能不带时区，按 UTC 解释
                occurred_at = ensure_utc(datetime.fromisoformat(str(row[1])))
                keys.append((occurred_at, int(row[0])))
            except (IndexError, ValueError, TypeError, OverflowError):
                log.warning(
                    "ledger_row_unparseable",
                    partition=partition.name,
                    row=row,
                )
                keys.append(_UNPARSEABLE_KEY)
        return keys

    async def insert_row(self, partition: PartitionRef, index: int, row: LedgerRow) -> None:
        sheet_id = int(partition.handle)
        row_index = _HEADER_ROWS + index
        response = await send(
            self._http,
            "POST",
            f"{self._base}:batchUpdate",
            json={
                "requests": [
                    {
                        "insertDimension": {
                            "range": {
                                "sheetId": sheet_id,
                                "dimension": "ROWS",
                                "startIndex": row_index,
                                "endIndex": row_index + 1,
                            },
                            "inheritFromBefore": False,
                        }
                    },
                    {
                        "updateCells": {
                            "rows": [{"values": [_cell(v) for v in row.to_values()]}],
                            "fields": "userEnteredValue",
                            "start": {
                                "sheetId": sheet_id,
                                "rowIndex": row_index,
                                "columnIndex": 0,
                            },
                        }
                    },
                ]
            },
            headers=self._headers,
        )
        raise_for_response(response, partition.name, _NOT_FOUND_MARKERS)
