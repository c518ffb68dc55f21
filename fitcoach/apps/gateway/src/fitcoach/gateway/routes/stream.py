"""SSE 快照流路由

GET /api/stream: 先推送当前快照，再推送每次变化后的快照，空闲时发送心跳注释。
快照携带单调递增的 version，作为 SSE id；身份变化也会推送一次（identity 字段变化）。
"""

import asyncio
import json

from fastapi import APIRouter, Depends
from fitcoach.core.config import SSE_HEARTBEAT_INTERVAL
from fitcoach.core.models import ConversationSnapshot
from sse_starlette.sse import EventSourceResponse

from ..deps import get_coordinator, get_sse_hub
from ..services.coordinator import SyncCoordinator
from ..services.sse_hub import SSEHub

router = APIRouter()

SNAPSHOT_EVENT = "conversations"


def _snapshot_to_sse(snapshot: ConversationSnapshot) -> dict:
    return {
        "id": str(snapshot.version),
        "event": SNAPSHOT_EVENT,
        "data": json.dumps(snapshot.model_dump(mode="json"), ensure_ascii=False),
    }


@router.get("/api/stream")
async def stream_conversations(
    coordinator: SyncCoordinator = Depends(get_coordinator),
    sse_hub: SSEHub = Depends(get_sse_hub),
):
    """SSE 快照流端点"""
    queue = await sse_hub.subscribe()

    async def event_generator():
        try:
            yield _snapshot_to_sse(coordinator.snapshot())
            while True:
                try:
                    snapshot = await asyncio.wait_for(
                        queue.get(), timeout=SSE_HEARTBEAT_INTERVAL
                    )
                    yield _snapshot_to_sse(snapshot)
                except TimeoutError:
                    # 心跳保活
                    yield {"comment": "heartbeat"}
        finally:
            await sse_hub.unsubscribe(queue)

    return EventSourceResponse(event_generator())
