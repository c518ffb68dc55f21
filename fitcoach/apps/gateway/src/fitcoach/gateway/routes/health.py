"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 会话库连通性、会话状态与实时通道状态。
         profile=full 时额外探测托管平台数据 API。
"""

import structlog
from fastapi import APIRouter, Query, Request
from fitcoach.core.models import ChannelState, SessionStatus
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="检查配置文件：core（默认）仅本地检查；full 包含托管平台探测",
    ),
):
    """Readiness 检查

    检查项：
    1. sqlite: 会话库连通性
    2. session: 会话闸门状态，LOADING 时未就绪
    3. live_channel: 实时通道状态（仅报告，不影响就绪）
    4. sse_subscribers: 当前 SSE 连接数（仅报告）
    5. backend: 根据 profile 决定是否探测数据 API
    """
    effective_profile = profile or "core"

    checks: dict = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. 会话状态
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        checks["session"] = "error: not initialized"
        all_ok = False
    else:
        status = coordinator.gate.status
        checks["session"] = status.value
        if status is SessionStatus.LOADING:
            all_ok = False

        # 3. 实时通道：匿名时为 UNSUBSCRIBED，属于正常
        channel_state = coordinator.channel.state
        checks["live_channel"] = channel_state.value
        if channel_state in (ChannelState.FAILED, ChannelState.BACKOFF):
            checks["live_channel_attempt"] = coordinator.channel.attempt

    sse_hub = getattr(request.app.state, "sse_hub", None)
    if sse_hub is not None:
        checks["sse_subscribers"] = sse_hub.subscriber_count()

    # 5. 托管平台数据 API
    if effective_profile == "full":
        rest_client = getattr(request.app.state, "rest_client", None)
        if rest_client is not None:
            try:
                healthy = await rest_client.health_check()
                checks["backend"] = "ok" if healthy else "unreachable"
                if not healthy:
                    all_ok = False
            except Exception as e:
                log.warning("health_check_error", error=str(e))
                checks["backend"] = "unreachable"
                all_ok = False
        else:
            checks["backend"] = "skipped"
    else:
        checks["backend"] = "skipped"

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "profile": effective_profile,
            "checks": checks,
        },
    )
