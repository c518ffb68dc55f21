"""FastAPI 应用主文件

app 创建 + lifespan 管理：本地会话库初始化/关闭 + 平台客户端初始化 + 同步组件装配 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fitcoach.backend import (
    AuthClient,
    BackendMessageRepository,
    PushRelayClient,
    RealtimeClient,
    RestClient,
    load_backend_config,
)
from fitcoach.core.config import (
    REALTIME_HEARTBEAT_INTERVAL,
    REALTIME_JOIN_TIMEOUT,
    RESYNC_INTERVAL,
    get_db_path,
)
from fitcoach.core.store import MessageRepository, StoreGroup, create_store_group

from .middleware.logging_config import setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import conversations, health, lifecycle, session, stream
from .services.conversation_store import ConversationStore
from .services.coordinator import SyncCoordinator
from .services.live_channel import LiveUpdateChannel
from .services.message_service import MessageService
from .services.resync import ForegroundResynchronizer
from .services.session_gate import SessionGate
from .services.sse_hub import SSEHub
from .services.unread import UnreadAggregator

log = structlog.get_logger()


def install_services(
    app: FastAPI,
    store_group: StoreGroup,
    repository: MessageRepository,
    auth: AuthClient,
    realtime: RealtimeClient,
    push: PushRelayClient | None = None,
    rest_client: RestClient | None = None,
    resync_interval_s: float = RESYNC_INTERVAL,
) -> SyncCoordinator:
    """装配同步组件并挂到 app.state

    进程内只创建一个 ConversationStore；所有消费者通过 coordinator 读取。
    """
    sse_hub = SSEHub()
    gate = SessionGate(auth, store_group.session_store)
    if rest_client is not None:
        gate.add_token_listener(rest_client.set_access_token)

    store = ConversationStore(repository)
    aggregator = UnreadAggregator(store)
    channel = LiveUpdateChannel(realtime, store, token_provider=lambda: gate.access_token)
    resync = ForegroundResynchronizer(gate, store, channel, interval_s=resync_interval_s)
    coordinator = SyncCoordinator(gate, store, aggregator, channel, resync, sse_hub)

    app.state.store_group = store_group
    app.state.sse_hub = sse_hub
    app.state.session_gate = gate
    app.state.coordinator = coordinator
    app.state.message_service = MessageService(gate, store, repository, push)
    app.state.rest_client = rest_client
    return coordinator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时恢复会话并开始同步，关闭时拆除订阅并释放连接"""
    store_group = await create_store_group(get_db_path())

    config = load_backend_config()
    anon_key = config.anon_key.get_secret_value()
    rest_client = RestClient(config.rest_url, anon_key=anon_key, timeout_s=config.timeout_s)
    auth_client = AuthClient(config.auth_url, anon_key=anon_key, timeout_s=config.timeout_s)
    realtime_client = RealtimeClient(
        config.realtime_url,
        anon_key=anon_key,
        heartbeat_interval=REALTIME_HEARTBEAT_INTERVAL,
        join_timeout=REALTIME_JOIN_TIMEOUT,
    )
    push_client = PushRelayClient(config.push_relay_url, timeout_s=config.timeout_s)

    coordinator = install_services(
        app,
        store_group=store_group,
        repository=BackendMessageRepository(rest_client),
        auth=auth_client,
        realtime=realtime_client,
        push=push_client,
        rest_client=rest_client,
    )
    log.info("backend_configured", base_url=config.base_url, timeout_s=config.timeout_s)

    await coordinator.start()

    yield

    await coordinator.stop()
    await realtime_client.close()
    await rest_client.aclose()
    await auth_client.aclose()
    await push_client.aclose()
    await store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="FitCoach Sync Gateway",
        version="0.1.0",
        description="FitCoach 会话列表与未读数同步服务",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()

    app.include_router(session.router, tags=["session"])
    app.include_router(conversations.router, tags=["conversations"])
    app.include_router(lifecycle.router, tags=["lifecycle"])
    app.include_router(stream.router, tags=["stream"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
