"""统一导出 Agent、会话与交互协议相关数据模型，供其他模块引用。"""
from agent_relay.models.agent import (
    PROVIDER_CLIENTS,
    AgentConfig,
    Provider,
    RoleDefinition,
)
from agent_relay.models.protocol import (
    ChatRequest,
    ChatResult,
    CommandEvent,
    ComponentEvent,
    Embed,
    MessageChunk,
    MessageEvent,
    ModelDescriptor,
    OutboundMessage,
    RouterReply,
    TurnOutcome,
)
from agent_relay.models.session import ActiveEntry, EffectiveAgent, Session

__all__ = [
    "PROVIDER_CLIENTS",
    "AgentConfig",
    "Provider",
    "RoleDefinition",
    "ChatRequest",
    "ChatResult",
    "CommandEvent",
    "ComponentEvent",
    "Embed",
    "MessageChunk",
    "MessageEvent",
    "ModelDescriptor",
    "OutboundMessage",
    "RouterReply",
    "TurnOutcome",
    "ActiveEntry",
    "EffectiveAgent",
    "Session",
]
