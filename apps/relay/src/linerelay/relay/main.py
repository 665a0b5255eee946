"""Relay 组合根 -- 按配置装配队列、Sink 与 worker 池

环境变量只在这里读取（load_sink_config / load_relay_config），
各组件通过构造参数接收配置与客户端。
"""

import asyncio
import signal
from collections.abc import Callable
from datetime import datetime

import structlog
from linerelay.core.config import get_db_path, get_local_blob_dir
from linerelay.core.store import StoreGroup, create_store_group
from linerelay.sinks import (
    BlobSink,
    LedgerSink,
    PartitionResolver,
    SinkConfig,
    load_sink_config,
)
from linerelay.sinks.clients import (
    DriveBlobClient,
    InMemoryLedgerClient,
    LineContentFetcher,
    LocalBlobClient,
    SheetsLedgerClient,
)
from linerelay.sinks.protocols import BlobClient, LedgerClient, MediaFetcher

from .config import RelayConfig, load_relay_config
from .logging_config import setup_logging
from .services.dispatcher import Dispatcher
from .services.ingest_service import IngestService
from .services.retry_manager import RetryManager

log = structlog.get_logger()


class Pipeline:
    """装配完成的管线：入站服务 + 调度器，以及需要关闭的资源"""

    def __init__(
        self,
        store_group: StoreGroup,
        ingest: IngestService,
        dispatcher: Dispatcher,
        resolver: PartitionResolver,
        closers: list[Callable] | None = None,
    ) -> None:
        self.store_group = store_group
        self.ingest = ingest
        self.dispatcher = dispatcher
        self.resolver = resolver
        self._closers = closers or []

    async def close(self) -> None:
        """停止调度器并释放 HTTP 客户端与数据库连接"""
        await self.dispatcher.stop()
        for close in self._closers:
            await close()
        await self.store_group.close()


def create_ledger_client(config: SinkConfig) -> LedgerClient:
    """按 ledger_backend 创建 ledger 客户端"""
    if config.ledger_backend == "memory":
        log.warning("memory_ledger_in_use")
        return InMemoryLedgerClient()
    if not config.sheets_spreadsheet_id:
        raise ValueError("ledger_backend=sheets 需要 LINERELAY_SHEETS_SPREADSHEET_ID")
    return SheetsLedgerClient(
        config.sheets_spreadsheet_id,
        config.sheets_token.get_secret_value(),
        base_url=config.sheets_base_url,
    )


def create_blob_client(config: SinkConfig) -> BlobClient:
    """按 blob_backend 创建 blob 客户端"""
    if config.blob_backend == "local":
        return LocalBlobClient(get_local_blob_dir())
    return DriveBlobClient(
        config.drive_token.get_secret_value(),
        base_url=config.drive_base_url,
        default_parent=config.drive_root_folder,
    )


def build_pipeline(
    store_group: StoreGroup,
    sink_config: SinkConfig,
    relay_config: RelayConfig,
    *,
    ledger_client: LedgerClient | None = None,
    blob_client: BlobClient | None = None,
    fetcher: MediaFetcher | None = None,
    clock: Callable[[], datetime] | None = None,
) -> Pipeline:
    """装配管线；未显式传入的客户端按配置创建"""
    ledger_client = ledger_client or create_ledger_client(sink_config)
    blob_client = blob_client or create_blob_client(sink_config)
    fetcher = fetcher or LineContentFetcher(
        sink_config.line_channel_token.get_secret_value(),
        base_url=sink_config.line_data_base_url,
    )

    resolver = PartitionResolver(
        ledger_client,
        blob_client,
        blob_root=sink_config.blob_root,
        blob_root_parent=(
            sink_config.drive_root_folder
            if isinstance(blob_client, DriveBlobClient)
            else None
        ),
        zone=sink_config.partition_zone,
    )
    queue = store_group.queue
    sinks = [
        BlobSink(blob_client, fetcher, resolver, timeout_s=sink_config.call_timeout_s),
        LedgerSink(ledger_client, resolver, queue, timeout_s=sink_config.call_timeout_s),
    ]
    retry_manager = RetryManager(queue, relay_config, clock=clock)
    dispatcher = Dispatcher(
        queue,
        sinks,
        retry_manager,
        worker_count=relay_config.worker_count,
        poll_interval_s=relay_config.poll_interval_s,
        stale_claim_s=relay_config.stale_claim_s,
        clock=clock,
    )
    ingest = IngestService(store_group.deduplicator, clock=clock)

    closers = [
        client.aclose
        for client in (ledger_client, blob_client, fetcher)
        if hasattr(client, "aclose")
    ]
    return Pipeline(store_group, ingest, dispatcher, resolver, closers)


async def open_pipeline() -> Pipeline:
    """从环境变量加载配置并打开管线"""
    sink_config = load_sink_config()
    relay_config = load_relay_config()
    store_group = await create_store_group(get_db_path())
    try:
        return build_pipeline(store_group, sink_config, relay_config)
    except Exception:
        await store_group.close()
        raise


async def serve() -> None:
    """运行 worker 池直到收到 SIGTERM / SIGINT"""
    setup_logging()
    pipeline = await open_pipeline()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await pipeline.dispatcher.start()
        log.info("relay_started", db_path=get_db_path())
        await stop_event.wait()
        log.info("relay_stopping")
    finally:
        await pipeline.close()
        log.info("relay_shutdown_complete")
