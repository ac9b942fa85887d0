"""Agent 配置模型：AgentConfig、RoleDefinition 与 Provider 枚举。

AgentConfig 是启动时从 YAML 加载的不可变模板；会话级覆盖（模型、Provider、角色、工作区）
只保存在 Session 上，绝不回写到模板，避免会话之间互相污染。
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Provider(str, Enum):
    """可选的模型提供方（向导第一步的选项）。"""

    CLAUDE_CLI = "claude-cli"
    CURSOR = "cursor"
    GEMINI_API = "gemini-api"
    ANTIGRAVITY = "antigravity"
    OLLAMA = "ollama"
    OPENAI = "openai"
    GROQ = "groq"


# 向导中选择的 Provider -> 实际调用的聊天客户端
PROVIDER_CLIENTS: dict[str, str] = {
    Provider.CURSOR.value: "cursor",
    Provider.CLAUDE_CLI.value: "claude",
    Provider.GEMINI_API.value: "antigravity",
    Provider.ANTIGRAVITY.value: "antigravity",
    Provider.OLLAMA.value: "ollama",
    Provider.OPENAI.value: "openai",
    Provider.GROQ.value: "groq",
}

RiskLevel = Literal["low", "medium", "high"]


class AgentConfig(BaseModel):
    """Agent 模板：模型、Provider、系统提示、温度、能力与风险等级。

    frozen=True：运行中的会话不能原地修改模板。
    """

    model_config = ConfigDict(frozen=True)

    agent_id: str
    display_name: str = ""
    description: str = ""
    default_model: str = ""
    system_prompt: str = ""
    temperature: float = 0.7
    max_output_tokens: int = 4096
    capabilities: frozenset[str] = Field(default_factory=frozenset)
    risk_level: RiskLevel = "low"
    provider: Provider = Provider.GEMINI_API
    is_manager: bool = False  # 可以派生其他 Agent

    @property
    def client(self) -> str:
        return PROVIDER_CLIENTS[self.provider.value]


class RoleDefinition(BaseModel):
    """向导第三步可选的角色：名称、图标、说明及追加到系统提示的内容。"""

    model_config = ConfigDict(frozen=True)

    role_id: str
    name: str
    emoji: str = ""
    description: str = ""
    document_path: str = ""  # 仓库内的角色文档，如 .roles/builder.md
    system_prompt_addition: str = ""
