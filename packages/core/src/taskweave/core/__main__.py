"""CLI 入口模块 -- python -m taskweave.core <command>

支持的命令：
  reconcile     执行一次卡死任务巡检
  stream-tail   打印事件流最新条目
"""

import asyncio
import sys

from .config import get_db_path, load_worker_config


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m taskweave.core <command> [args]")
        print("命令:")
        print("  reconcile          执行一次卡死任务巡检")
        print("  stream-tail [N]    打印事件流最新 N 条（默认 20）")
        sys.exit(1)

    command = sys.argv[1]

    if command == "reconcile":
        asyncio.run(reconcile())
    elif command == "stream-tail":
        count = 20
        if len(sys.argv) > 2:
            try:
                count = int(sys.argv[2])
            except ValueError:
                print(f"非法条数: {sys.argv[2]}")
                sys.exit(1)
        asyncio.run(stream_tail(count))
    else:
        print(f"未知命令: {command}")
        print("可用命令: reconcile, stream-tail")
        sys.exit(1)


async def reconcile() -> None:
    """执行一次巡检"""
    from .queue import SqliteQueue
    from .reconciler import TaskReconciler
    from .store import create_store_group

    db_path = get_db_path()
    config = load_worker_config()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    try:
        reconciler = TaskReconciler(
            task_store=store_group.task_store,
            queue=SqliteQueue(store_group.conn),
            queue_name=config.queue_name,
            stale_running_after_s=config.stale_running_after_s,
            stale_pending_after_s=config.stale_pending_after_s,
        )
        report = await reconciler.sweep()
        print(
            f"巡检完成: RUNNING 超时 {len(report.stale_running)} 条，"
            f"未投递 {len(report.never_dispatched)} 条"
        )
    finally:
        await store_group.close()


async def stream_tail(count: int) -> None:
    """打印事件流最新条目"""
    from .store import create_store_group
    from .stream import EventStream

    store_group = await create_store_group(get_db_path())
    try:
        stream = EventStream(store_group.conn)
        entries = await stream.read("$", count=count)
        if not entries:
            print(f"事件流 {stream.stream_key} 为空")
            return
        for entry in entries:
            event = entry.event
            print(f"{entry.stream_id}  {event.type.value:<28} user={event.user_id}  {event.payload}")
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
