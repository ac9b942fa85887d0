"""ChatAdapter：所有聊天后端的抽象基类。"""

from __future__ import annotations

from abc import ABC, abstractmethod

from agent_relay.models.protocol import ChatRequest, ChatResult


class ChatAdapter(ABC):
    """聊天后端的基类。

    每个 Adapter 负责：
    1. 把 ChatRequest（含叠加覆盖后的 EffectiveAgent）转为具体后端的请求
    2. 把后端的回复解析为 ChatResult
    具体后端（CLI 进程、HTTP API）由部署方提供，核心不关心其协议。
    """

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResult:
        """执行一轮对话，返回结果。可能被取消（asyncio.CancelledError）。"""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """检查后端是否可用。"""
        ...

    async def close(self) -> None:
        """释放后端资源；默认无事可做。"""
        return None
