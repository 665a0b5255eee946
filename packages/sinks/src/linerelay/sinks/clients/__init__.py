"""边界客户端实现：Google Sheets / Google Drive / LINE（httpx），以及内存与本地实现"""

from .drive import DriveBlobClient
from .line import LineContentFetcher
from .local import LocalBlobClient
from .memory import InMemoryBlobClient, InMemoryLedgerClient, InMemoryMediaFetcher
from .sheets import SheetsLedgerClient

__all__ = [
    "SheetsLedgerClient",
    "DriveBlobClient",
    "LineContentFetcher",
    "LocalBlobClient",
    "InMemoryLedgerClient",
    "InMemoryBlobClient",
    "InMemoryMediaFetcher",
]
