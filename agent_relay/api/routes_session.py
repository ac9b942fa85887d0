"""会话查询路由：列出会话、统计、单个会话详情与轮次日志。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from agent_relay.api.deps import get_state

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("")
async def list_sessions(
    user_id: str | None = None,
    channel_id: str | None = None,
    status: str | None = None,
    state=Depends(get_state),
):
    """按用户 / 频道 / 状态过滤内存中的会话，按开始时间倒序。"""
    sessions = state.sessions.list_sessions(user_id=user_id, channel_id=channel_id, status=status)
    return {"sessions": [s.model_dump(mode="json") for s in sessions]}


@router.get("/stats")
async def session_stats(state=Depends(get_state)):
    """当前进程的会话统计；开启归档时附带历史累计。"""
    stats = state.sessions.stats()
    if state.archive:
        stats["archived"] = await state.archive.totals()
    return stats


@router.get("/{session_id}")
async def get_session(session_id: str, state=Depends(get_state)):
    session = state.sessions.get_session(session_id)
    if session is None and state.archive:
        session = await state.archive.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"session": session.model_dump(mode="json")}


@router.get("/{session_id}/turns")
async def get_session_turns(session_id: str, state=Depends(get_state)):
    """该会话的轮次日志，最新的在最前。"""
    logs = state.turn_logger.get_session_logs(session_id)
    return {
        "turns": [log.model_dump() for log in logs],
        "summary": state.turn_logger.session_summary(session_id),
    }
