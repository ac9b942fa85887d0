"""测试共用的夹具：仓库自带的 agents 目录与可控的聊天后端。"""

import asyncio
from pathlib import Path

import pytest

from agent_relay.models.protocol import ChatRequest, ChatResult
from agent_relay.registry.agent_registry import AgentRegistry
from agent_relay.worker.adapters.base import ChatAdapter

AGENTS_DIR = str(Path(__file__).resolve().parent.parent / "agents")


class ScriptedAdapter(ChatAdapter):
    """按预设返回内容的聊天后端；可设置延迟或让它一直挂起。"""

    def __init__(self, content: str = "ok", cost: float = 0.0, delay: float = 0.0, error: Exception | None = None):
        self.content = content
        self.cost = cost
        self.delay = delay
        self.error = error
        self.requests: list[ChatRequest] = []
        self.started = asyncio.Event()

    async def chat(self, request: ChatRequest) -> ChatResult:
        self.requests.append(request)
        self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return ChatResult(content=self.content, cost_usd=self.cost)

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def agents():
    return AgentRegistry(config_dir=AGENTS_DIR)
