"""平台交互路由：平台层把斜杠命令、组件激活与频道消息转发到这里，拿回要发送的消息。"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agent_relay.api.deps import get_state
from agent_relay.models.protocol import CommandEvent, ComponentEvent, MessageEvent, RouterReply

router = APIRouter(prefix="/api/interactions", tags=["interactions"])


@router.post("/command", response_model=RouterReply)
async def handle_command(event: CommandEvent, state=Depends(get_state)) -> RouterReply:
    """斜杠命令：/agent、/run、/run-adv、/kill。"""
    return await state.router.handle_command(event)


@router.post("/component", response_model=RouterReply)
async def handle_component(event: ComponentEvent, state=Depends(get_state)) -> RouterReply:
    """按钮 / 下拉菜单：custom_id 为关联令牌。"""
    return await state.router.handle_component(event)


@router.post("/message", response_model=RouterReply)
async def handle_message(event: MessageEvent, state=Depends(get_state)) -> RouterReply:
    """频道消息：交给当前会话的 Agent，回复已按平台上限分片。"""
    return await state.router.handle_message(event)
