"""会话相关数据模型：Session、活跃索引条目与叠加覆盖后的 EffectiveAgent。

Session 是历史/统计记录；「当前在和谁对话」只由 ActiveEntry（活跃索引）决定。
"""

from __future__ import annotations

import random
import string
import time
from datetime import datetime
from typing import Literal, NamedTuple

from pydantic import BaseModel, Field

SessionStatus = Literal["active", "paused", "completed", "error"]


def generate_session_id() -> str:
    """生成 session-<毫秒时间戳>-<7 位 base36 随机串>。"""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"session-{int(time.time() * 1000)}-{suffix}"


class Session(BaseModel):
    """某个 (user, channel) 与某个 Agent 的一段对话，含用量统计与会话级覆盖。"""

    id: str = Field(default_factory=generate_session_id)
    agent_id: str
    user_id: str
    channel_id: str
    start_time: datetime = Field(default_factory=datetime.now)
    last_activity: datetime = Field(default_factory=datetime.now)
    end_time: datetime | None = None
    message_count: int = 0
    accumulated_cost: float = 0.0
    status: SessionStatus = "active"

    # 会话级覆盖，不回写 AgentConfig
    model_override: str | None = None
    provider_override: str | None = None
    role_override: str | None = None
    workspace_override: str | None = None


class ActiveEntry(NamedTuple):
    """活跃索引的一条记录；整体替换，读者不会看到半更新的值。"""

    agent_id: str
    session_id: str


class EffectiveAgent(BaseModel):
    """Agent 模板叠加会话覆盖之后，本轮对话真正使用的配置。"""

    agent_id: str
    display_name: str = ""
    model: str = ""
    provider: str = ""
    client: str = ""
    system_prompt: str = ""
    temperature: float = 0.7
    max_output_tokens: int = 4096
    role_id: str | None = None
    workspace: str | None = None
