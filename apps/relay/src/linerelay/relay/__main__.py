"""CLI 入口模块 -- python -m linerelay.relay <command>

支持的命令：
  run                 启动 worker 池，直到收到 SIGTERM / SIGINT
  ingest <file>       将 webhook 请求体（JSON 文件，"-" 表示标准输入）写入队列
  drain               处理当前所有到期消息后退出
"""

import asyncio
import json
import sys
from pathlib import Path

_USAGE = """用法: python -m linerelay.relay <command>
命令:
  run                 启动 worker 池
  ingest <file>       将 webhook 请求体写入队列（"-" 表示标准输入）
  drain               处理当前所有到期消息后退出"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]
    args = sys.argv[2:]

    if command == "run":
        from .main import serve

        asyncio.run(serve())
    elif command == "ingest":
        if not args:
            print("ingest 需要文件参数")
            sys.exit(1)
        asyncio.run(ingest_file(args[0]))
    elif command == "drain":
        asyncio.run(drain())
    else:
        print(f"未知命令: {command}")
        print(_USAGE)
        sys.exit(1)


async def ingest_file(path: str) -> None:
    """读取 webhook 请求体并逐个事件入队"""
    from linerelay.core.exceptions import IngressValidationError

    from .logging_config import setup_logging
    from .main import open_pipeline

    setup_logging()
    raw = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    try:
        body = json.loads(raw)
    except json.JSONDecodeError as e:
        print(f"JSON 解析失败: {e}")
        sys.exit(1)

    pipeline = await open_pipeline()
    try:
        outcomes = await pipeline.ingest.ingest_body(body)
    except IngressValidationError as e:
        print(f"请求体格式错误: {e}")
        sys.exit(1)
    finally:
        await pipeline.close()

    for outcome in outcomes:
        print(outcome.value)


async def drain() -> None:
    """单次批处理：处理所有到期消息"""
    from .logging_config import setup_logging
    from .main import open_pipeline

    setup_logging()
    pipeline = await open_pipeline()
    try:
        await pipeline.dispatcher.recover_stale()
        processed = await pipeline.dispatcher.drain()
        print(f"处理 {processed} 条消息")
    finally:
        await pipeline.close()


if __name__ == "__main__":
    main()
