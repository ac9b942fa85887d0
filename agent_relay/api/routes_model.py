"""Agent 与模型目录路由：Agent 列表 / 详情、各 Provider 的模型列表、自动选择与缓存失效。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from agent_relay.api.deps import get_state
from agent_relay.core.errors import UnknownAgent

router = APIRouter(prefix="/api", tags=["catalog"])


# ── Agent ──

@router.get("/agents")
async def list_agents(state=Depends(get_state)):
    """获取所有已注册 Agent 的列表。"""
    return {"agents": [a.model_dump(mode="json") for a in state.agents.list_agents()]}


@router.post("/agents/reload")
async def reload_agents(state=Depends(get_state)):
    """从磁盘重新加载 agents 目录。"""
    state.agents.reload()
    return {"ok": True, "count": len(state.agents.agents)}


@router.get("/agents/{agent_id}")
async def get_agent(agent_id: str, state=Depends(get_state)):
    try:
        agent = state.agents.get_agent(agent_id)
    except UnknownAgent as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"agent": agent.model_dump(mode="json")}


# ── 模型目录 ──

@router.get("/models/{provider}")
async def list_models(provider: str, state=Depends(get_state)):
    """该 Provider 的模型列表；在线目录不可用时为兜底列表（source=fallback）。"""
    models = await state.catalog.list_models(provider)
    return {"provider": provider, "models": [m.model_dump() for m in models]}


@router.get("/models/{provider}/roles")
async def models_for_roles(provider: str, state=Depends(get_state)):
    """按能力类别（manager / coder / architect）分组的模型。"""
    buckets = await state.catalog.models_for_roles(provider)
    return {cls: [m.model_dump() for m in models] for cls, models in buckets.items()}


@router.get("/models/{provider}/auto")
async def auto_select(provider: str, role: str | None = None, state=Depends(get_state)):
    """为 (provider, role) 自动选择的模型。"""
    model = await state.catalog.auto_select(provider, role)
    return {"model": model.model_dump()}


@router.post("/models/invalidate")
async def invalidate_models(provider: str | None = None, state=Depends(get_state)):
    """清除模型目录缓存；不带 provider 时全部清除。"""
    state.catalog.invalidate(provider)
    return {"ok": True, "provider": provider}
