"""CLI 入口模块 -- python -m linerelay.core <command>

支持的命令：
  stats                    各状态消息数
  list-dead                列出死信及其 last_error
  replay <external_id>     将死信重置为 PENDING
  recover-stale [seconds]  释放超时未完成的认领（默认 600 秒）
"""

import asyncio
import sys
from datetime import UTC, datetime, timedelta

from .config import get_db_path

_USAGE = """用法: python -m linerelay.core <command>
命令:
  stats                    各状态消息数
  list-dead                列出死信及其 last_error
  replay <external_id>     将死信重置为 PENDING
  recover-stale [seconds]  释放超时未完成的认领（默认 600 秒）"""

DEFAULT_STALE_SECONDS = 600


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]
    args = sys.argv[2:]

    if command == "stats":
        asyncio.run(show_stats())
    elif command == "list-dead":
        asyncio.run(list_dead())
    elif command == "replay":
        if not args:
            print("replay 需要 external_id 参数")
            sys.exit(1)
        asyncio.run(replay(args[0]))
    elif command == "recover-stale":
        seconds = int(args[0]) if args else DEFAULT_STALE_SECONDS
        asyncio.run(recover_stale(seconds))
    else:
        print(f"未知命令: {command}")
        print(_USAGE)
        sys.exit(1)


async def show_stats() -> None:
    """打印各状态消息数"""
    from .store import create_store_group

    async with await create_store_group(get_db_path()) as store_group:
        counts = await store_group.queue.count_by_status()
    for status, count in counts.items():
        print(f"{status.value:<14} {count}")


async def list_dead() -> None:
    """列出死信"""
    from .models import MessageStatus
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        dead = await store_group.queue.list_by_status(MessageStatus.DEAD_LETTERED)
        if not dead:
            print("没有死信")
            return
        for message in dead:
            print(
                f"{message.external_id}\t{message.kind.value}\t"
                f"attempts={message.attempts}\t{message.last_error or ''}"
            )
    finally:
        await store_group.close()


async def replay(external_id: str) -> None:
    """按 external_id 重放死信"""
    from .exceptions import MessageStatusConflictError
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        message = await store_group.queue.get_by_external_id(external_id)
        if message is None:
            print(f"消息不存在: {external_id}")
            sys.exit(1)
        try:
            await store_group.queue.replay(message.message_id)
        except MessageStatusConflictError:
            print(f"消息不是死信，当前状态: {message.status.value}")
            sys.exit(1)
        print(f"已重置为 PENDING: {external_id}")
    finally:
        await store_group.close()


async def recover_stale(seconds: int) -> None:
    """释放超过 seconds 秒仍未完成的认领"""
    from .store import create_store_group

    cutoff = datetime.now(UTC) - timedelta(seconds=seconds)
    async with await create_store_group(get_db_path()) as store_group:
        released = await store_group.queue.release_stale(cutoff)
    print(f"释放 {released} 条超时认领")


if __name__ == "__main__":
    main()
