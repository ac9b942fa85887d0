"""平台与核心之间的交互协议：事件、回复载荷、消息分片与模型描述。

路由层把平台事件转成这些结构，核心组件只认这些结构，不依赖具体平台 SDK。
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from agent_relay.models.session import EffectiveAgent


class MessageChunk(BaseModel):
    """分片引擎输出的一段消息，只在发送前短暂存在，从不持久化。

    lead_marker / tail_marker 记录引擎为拆开的代码块补上的围栏标记，
    raw 去掉它们后即为原文中的对应片段。
    """

    text: str
    is_fenced_code: bool = False
    index: int = 0
    total: int = 1
    lead_marker: str = ""
    tail_marker: str = ""

    @property
    def raw(self) -> str:
        end = len(self.text) - len(self.tail_marker)
        return self.text[len(self.lead_marker):end]


class ModelDescriptor(BaseModel):
    """模型目录中的一项：名称、展示名、所属 Provider 以及来源。"""

    name: str
    display_name: str = ""
    provider: str = ""
    description: str = ""
    source: Literal["live", "fallback", "default"] = "live"


# ── 平台事件 ──

class CommandEvent(BaseModel):
    """斜杠命令调用，如 /agent start、/run-adv。"""

    user_id: str
    channel_id: str
    command: str
    action: str = ""
    options: dict[str, str] = Field(default_factory=dict)


class ComponentEvent(BaseModel):
    """按钮 / 下拉菜单被激活：custom_id 即关联令牌，values 为下拉所选值。"""

    user_id: str
    channel_id: str
    custom_id: str
    values: list[str] = Field(default_factory=list)


class MessageEvent(BaseModel):
    """频道里的普通消息。"""

    user_id: str
    channel_id: str
    content: str
    message_id: str = ""


# ── 回复载荷 ──

class SelectOption(BaseModel):
    label: str
    value: str
    description: str = ""


class Component(BaseModel):
    """交互组件描述；custom_id 携带关联令牌。渲染由平台层负责。"""

    type: Literal["select", "button"] = "select"
    custom_id: str
    label: str = ""
    options: list[SelectOption] = Field(default_factory=list)


class EmbedField(BaseModel):
    name: str
    value: str
    inline: bool = False


class Embed(BaseModel):
    title: str = ""
    description: str = ""
    color: int = 0x5865F2
    fields: list[EmbedField] = Field(default_factory=list)
    footer: str = ""
    timestamp: datetime | None = None


class OutboundMessage(BaseModel):
    """发回平台的一条消息：纯文本、富文本块与交互组件。"""

    content: str = ""
    embeds: list[Embed] = Field(default_factory=list)
    components: list[Component] = Field(default_factory=list)
    ephemeral: bool = False


class RouterReply(BaseModel):
    """路由层处理一个事件后的结果：要发出的消息，以及（若有）涉及的会话。"""

    ok: bool = True
    messages: list[OutboundMessage] = Field(default_factory=list)
    session_id: str | None = None


# ── 对话调用 ──

class ChatRequest(BaseModel):
    """一次对话调用交给聊天适配器的输入。"""

    session_id: str
    turn_id: str
    user_id: str
    channel_id: str
    agent: EffectiveAgent
    message: str


class ChatResult(BaseModel):
    """聊天适配器返回的结果；cost_usd 计入会话累计花费。"""

    content: str = ""
    cost_usd: float = 0.0
    duration_ms: int = 0
    is_error: bool = False


class TurnOutcome(BaseModel):
    """一轮对话的最终结果：完成（有分片）、失败（有错误说明）或被取消（什么都不发）。"""

    status: Literal["completed", "failed", "cancelled"]
    session_id: str | None = None
    turn_id: str = ""
    chunks: list[MessageChunk] = Field(default_factory=list)
    messages: list[OutboundMessage] = Field(default_factory=list)
    error: str = ""
