"""structlog 配置模块

dev 模式：pretty print 可读输出
json 模式：结构化 JSON 输出

httpx 每个请求、aiohttp websocket 每帧都会打 INFO/DEBUG 日志，
同步链路自身已有 auth_* / realtime_* 等事件，默认把这些库压到 WARNING。
"""

import logging
import os

import structlog

DEFAULT_LIBRARY_LEVELS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiohttp": logging.WARNING,
    "aiosqlite": logging.WARNING,
}


def _to_level(name: str, default: int) -> int:
    level = logging.getLevelName(name.strip().upper())
    return level if isinstance(level, int) else default


def parse_library_levels(raw: str) -> dict[str, int]:
    """解析 "httpx=DEBUG,aiohttp=INFO" 形式的第三方库日志级别

    无法识别的级别名按 WARNING 处理，缺少 "=" 的片段忽略。
    """
    levels: dict[str, int] = {}
    for item in raw.split(","):
        name, sep, level = item.partition("=")
        if not sep or not name.strip():
            continue
        levels[name.strip()] = _to_level(level, logging.WARNING)
    return levels


def setup_logging() -> None:
    """初始化 structlog 配置

    根据 FITCOACH_LOG_FORMAT 环境变量选择渲染模式：
    - "json": 结构化 JSON 输出（生产环境）
    - "dev" (默认): pretty print 可读输出
    FITCOACH_LOG_LEVEL 控制日志级别，默认 INFO。
    FITCOACH_LOG_LIBRARY_LEVELS 覆盖第三方库的级别，如 "httpx=DEBUG,aiohttp=INFO"。
    """
    log_format = os.environ.get("FITCOACH_LOG_FORMAT", "dev")
    log_level = _to_level(os.environ.get("FITCOACH_LOG_LEVEL", "INFO"), logging.INFO)
    library_levels = {
        **DEFAULT_LIBRARY_LEVELS,
        **parse_library_levels(os.environ.get("FITCOACH_LOG_LIBRARY_LEVELS", "")),
    }

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # uvicorn、httpx、aiohttp 的标准库日志也走同一个 renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name, level in library_levels.items():
        logging.getLogger(name).setLevel(level)
