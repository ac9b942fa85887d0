"""Worker 运行时：按 EffectiveAgent 的 client 选择聊天适配器并执行一轮对话。

适配器有两个来源：配置里的 adapters 列表（"模块:类名" 在启动时导入并实例化），
以及 create_app 直接注入的实例；同一 client 两边都有时注入的实例生效。
运行时只负责分派与日志。
"""

from __future__ import annotations

import importlib
import logging
import time
from typing import Any

from pydantic import BaseModel, Field

from agent_relay.models.protocol import ChatRequest, ChatResult
from agent_relay.worker.adapters.base import ChatAdapter

logger = logging.getLogger(__name__)


class AdapterConfig(BaseModel):
    """配置文件里的一个聊天后端：client 名、"模块:类名" 与构造参数。"""

    client: str
    target: str
    options: dict[str, Any] = Field(default_factory=dict)


class AdapterLoadError(RuntimeError):
    """配置的后端无法导入或实例化。"""


def load_adapter(config: AdapterConfig) -> ChatAdapter:
    """导入 config.target 指向的类并用 options 实例化。"""
    module_name, _, class_name = config.target.partition(":")
    if not module_name or not class_name:
        raise AdapterLoadError(f"Adapter target must look like 'module:Class', got: {config.target!r}")
    try:
        module = importlib.import_module(module_name)
        adapter_cls = getattr(module, class_name)
    except (ImportError, AttributeError) as exc:
        raise AdapterLoadError(f"Cannot import adapter {config.target} for client {config.client}") from exc

    adapter = adapter_cls(**config.options)
    if not isinstance(adapter, ChatAdapter):
        raise AdapterLoadError(f"{config.target} is not a ChatAdapter")
    logger.info("[CALL] adapter loaded: client=%s target=%s", config.client, config.target)
    return adapter


class NoAdapterConfigured(LookupError):
    """该 client 没有注册聊天后端。"""

    def __init__(self, client: str):
        self.client = client
        super().__init__(f"No chat backend configured for client: {client}")


class WorkerRuntime:
    """client 名 -> ChatAdapter 的分派表。"""

    def __init__(self, adapters: dict[str, ChatAdapter] | None = None):
        self.adapters: dict[str, ChatAdapter] = dict(adapters or {})

    def register_adapter(self, client: str, adapter: ChatAdapter) -> None:
        if client in self.adapters:
            logger.warning("[CALL] replacing adapter for client=%s", client)
        self.adapters[client] = adapter

    def get_adapter(self, client: str) -> ChatAdapter:
        adapter = self.adapters.get(client)
        if adapter is None:
            raise NoAdapterConfigured(client)
        return adapter

    async def chat(self, request: ChatRequest) -> ChatResult:
        """按 request.agent.client 选适配器并调用；异常原样抛给调用方。"""
        agent = request.agent
        logger.info(
            "[CALL] worker_runtime.chat: agent_id=%s client=%s model=%s session_id=%s turn_id=%s",
            agent.agent_id, agent.client, agent.model, request.session_id, request.turn_id,
        )
        adapter = self.get_adapter(agent.client)

        started = time.monotonic()
        try:
            result = await adapter.chat(request)
        except Exception as e:
            logger.error("[CALL] worker_runtime: agent %s raised: %s", agent.agent_id, e, exc_info=True)
            raise

        if not result.duration_ms:
            result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "[CALL] worker_runtime: agent %s completed output_len=%d cost=%.4f is_error=%s",
            agent.agent_id, len(result.content), result.cost_usd, result.is_error,
        )
        return result

    async def health(self) -> dict[str, bool]:
        """各适配器的健康状态；检查本身出错视为不可用。"""
        status = {}
        for client, adapter in self.adapters.items():
            try:
                status[client] = await adapter.health_check()
            except Exception as e:
                logger.warning("[CALL] health_check failed for client=%s: %s", client, e)
                status[client] = False
        return status

    async def shutdown(self) -> None:
        for client, adapter in self.adapters.items():
            try:
                await adapter.close()
            except Exception as e:
                logger.warning("[CALL] closing adapter client=%s failed: %s", client, e)
