"""配置常量模块 -- 可通过环境变量覆盖

包含本地会话库路径、实时通道重连退避、心跳、前台重同步周期等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("FITCOACH_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取本地 SQLite 会话库路径"""
    return os.environ.get(
        "FITCOACH_DB_PATH",
        str(_get_base_dir() / "sqlite" / "fitcoach.db"),
    )


# 实时通道心跳间隔（秒），与托管平台 Phoenix 协议默认值一致
REALTIME_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("FITCOACH_REALTIME_HEARTBEAT_INTERVAL", "30")
)

# phx_join 等待回复的超时（秒）
REALTIME_JOIN_TIMEOUT: int = int(
    os.environ.get("FITCOACH_REALTIME_JOIN_TIMEOUT", "10")
)

# 订阅失败后的重连退避：初始值、倍数、上限（秒）
REALTIME_BACKOFF_INITIAL: float = float(
    os.environ.get("FITCOACH_REALTIME_BACKOFF_INITIAL", "1.0")
)
REALTIME_BACKOFF_FACTOR: float = 2.0
REALTIME_BACKOFF_MAX: float = float(
    os.environ.get("FITCOACH_REALTIME_BACKOFF_MAX", "30.0")
)

# 周期性全量重同步间隔（秒），0 表示关闭
RESYNC_INTERVAL: int = int(os.environ.get("FITCOACH_RESYNC_INTERVAL_S", "300"))

# access_token 距过期不足该秒数时提前刷新
SESSION_REFRESH_MARGIN: int = int(
    os.environ.get("FITCOACH_SESSION_REFRESH_MARGIN_S", "60")
)

# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("FITCOACH_SSE_HEARTBEAT_INTERVAL", "15")
)

# 会话列表中最后一条消息的预览截断长度
MESSAGE_PREVIEW_LENGTH: int = 200

# 单条消息正文上限
MESSAGE_MAX_LENGTH: int = 4000
