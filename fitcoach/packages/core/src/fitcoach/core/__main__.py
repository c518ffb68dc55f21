"""CLI 入口模块 -- python -m fitcoach.core <command>

支持的命令：
  show-session   显示本地保存的会话（不输出令牌）
  clear-session  清除本地保存的会话，下次启动需重新登录
"""

import asyncio
import sys

from .config import get_db_path

_COMMANDS = ("show-session", "clear-session")


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m fitcoach.core <command>")
        print("命令:")
        print("  show-session   显示本地保存的会话")
        print("  clear-session  清除本地保存的会话")
        sys.exit(1)

    command = sys.argv[1]

    if command == "show-session":
        asyncio.run(show_session())
    elif command == "clear-session":
        asyncio.run(clear_session())
    else:
        print(f"未知命令: {command}")
        print(f"可用命令: {', '.join(_COMMANDS)}")
        sys.exit(1)


async def show_session() -> None:
    """显示本地保存的会话"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")

    store_group = await create_store_group(db_path)
    try:
        session = await store_group.session_store.load_session()
        if session is None:
            print("没有已保存的会话")
            return
        print(f"用户: {session.user_id} ({session.email or '-'})")
        print(f"过期时间: {session.expires_at.isoformat()}")
    finally:
        await store_group.conn.close()


async def clear_session() -> None:
    """清除本地保存的会话"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        await store_group.session_store.clear_session()
        print("已清除本地会话")
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
