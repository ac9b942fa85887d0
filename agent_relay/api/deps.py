"""路由依赖：从 request.app.state.relay 取出核心组件。"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request, status

if TYPE_CHECKING:
    from agent_relay.main import AppState


def get_state(request: Request) -> AppState:
    """获取应用状态（依赖注入）；lifespan 尚未完成时返回 503。"""
    state = getattr(request.app.state, "relay", None)
    if state is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Relay not initialized")
    return state
