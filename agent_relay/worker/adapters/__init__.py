"""聊天适配器：ChatAdapter 抽象基类，具体后端由部署方注入。"""
from agent_relay.worker.adapters.base import ChatAdapter

__all__ = [
    "ChatAdapter",
]
