"""应用生命周期路由 -- 由移动端转发前后台切换与页面聚焦

POST /api/lifecycle/app-state: {"state": "active" | "inactive" | "background"}
POST /api/lifecycle/focus: {"screen": "..."}
"""

from fastapi import APIRouter, Depends
from fitcoach.core.models import AppState
from pydantic import BaseModel, Field

from ..deps import get_coordinator
from ..services.coordinator import SyncCoordinator

router = APIRouter()


class AppStateRequest(BaseModel):
    state: AppState = Field(description="应用生命周期状态")


class FocusRequest(BaseModel):
    screen: str = Field(default="", description="获得焦点的页面名")


@router.post("/api/lifecycle/app-state")
async def app_state_changed(
    body: AppStateRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    resynced = await coordinator.resync.on_app_state(body.state)
    return {
        "state": body.state.value,
        "resynced": resynced,
        "channel_state": coordinator.channel.state.value,
    }


@router.post("/api/lifecycle/focus")
async def screen_focused(
    body: FocusRequest,
    coordinator: SyncCoordinator = Depends(get_coordinator),
):
    await coordinator.resync.on_screen_focus(body.screen)
    return {
        "screen": body.screen,
        "unread_count": coordinator.aggregator.count,
        "channel_state": coordinator.channel.state.value,
    }
