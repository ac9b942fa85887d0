"""高级启动向导（/run-adv）：provider → workspace → role → model | auto。

每一步都是纯函数：输入此前解码出的字段和本步的选择，输出下一步的 WizardPrompt，
或者链条终点的 StartRequest。服务端不保存任何向导状态，所有选择都在组件的 custom_id 里。
需要 I/O 的输入（工作区候选、模型列表）由路由层准备好后传入。
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field

from agent_relay.core import correlation
from agent_relay.core.correlation import (
    RUN_ADV_AUTO,
    RUN_ADV_MODEL,
    RUN_ADV_PROVIDER,
    RUN_ADV_ROLE,
    RUN_ADV_WORKSPACE,
)
from agent_relay.core.errors import MalformedToken
from agent_relay.models.agent import Provider
from agent_relay.models.protocol import (
    Component,
    Embed,
    ModelDescriptor,
    OutboundMessage,
    SelectOption,
)
from agent_relay.registry.roles import ROLE_DEFINITIONS
from agent_relay.workspace.scanner import MAX_WORKSPACE_OPTIONS, WorkspaceInfo

logger = logging.getLogger(__name__)

# 模型下拉留一个位置给「默认」兜底项
MAX_MODEL_OPTIONS = 24
WIZARD_AGENT_ID = "general-assistant"
WIZARD_COLOR = 0x5865F2

PROVIDER_OPTIONS: list[SelectOption] = [
    SelectOption(label="🌐 Gemini API", value=Provider.GEMINI_API.value, description="Google Gemini models via API key"),
    SelectOption(label="🚀 Antigravity", value=Provider.ANTIGRAVITY.value, description="Google Gemini via gcloud OAuth"),
    SelectOption(label="🖥️ Cursor", value=Provider.CURSOR.value, description="Cursor AI agent"),
    SelectOption(label="🦙 Ollama", value=Provider.OLLAMA.value, description="Local Ollama models"),
    SelectOption(label="💻 Claude CLI", value=Provider.CLAUDE_CLI.value, description="Anthropic Claude via CLI"),
    SelectOption(label="🧠 OpenAI", value=Provider.OPENAI.value, description="OpenAI hosted models"),
    SelectOption(label="⚡ Groq", value=Provider.GROQ.value, description="Groq hosted models"),
]


class WizardPrompt(BaseModel):
    """向导的一步：标题、说明，以及携带令牌的组件。"""

    step: str
    title: str
    description: str = ""
    components: list[Component] = Field(default_factory=list)

    def to_message(self) -> OutboundMessage:
        return OutboundMessage(
            embeds=[Embed(title=self.title, description=self.description, color=WIZARD_COLOR)],
            components=self.components,
        )


class StartRequest(BaseModel):
    """向导终点：用累积的全部选择启动会话。auto=True 时模型由自动选择决定。"""

    agent_id: str = WIZARD_AGENT_ID
    provider: str
    role: str
    workspace: str
    model: str | None = None
    auto: bool = False


def _require(step: str, selection: str | None, allowed: set[str] | None = None) -> str:
    if not selection:
        raise MalformedToken(step, "", "no selection")
    if allowed is not None and selection not in allowed:
        raise MalformedToken(step, selection, "selection not offered")
    return selection


def workspace_ref(path: str) -> str:
    """工作区在令牌里的写法：完整路径放得下就用路径，否则退回目录名（短形式）。"""
    if len(path) <= correlation.MAX_CUSTOM_ID_LENGTH:
        return path
    return Path(path).name


def _fit_token(step: str, *fixed: str, workspace: str) -> str:
    token = correlation.encode(step, *fixed, workspace)
    if correlation.fits_platform(token):
        return token
    short = correlation.encode(step, *fixed, Path(workspace).name)
    if not correlation.fits_platform(short):
        logger.warning("[WIZARD] token exceeds platform limit even in short form: %s", short[:40])
    return short


# ── 各步骤 ──

def provider_prompt() -> WizardPrompt:
    """第一步：选择 Provider。"""
    return WizardPrompt(
        step=RUN_ADV_PROVIDER,
        title="🚀 Step 1: Select Provider",
        description="Choose an AI provider for your agent session",
        components=[Component(
            custom_id=correlation.encode(RUN_ADV_PROVIDER),
            label="Select a provider...",
            options=PROVIDER_OPTIONS,
        )],
    )


def on_provider_selected(selection: str | None, workspaces: list[WorkspaceInfo]) -> WizardPrompt:
    """第二步：选择工作区；workspaces 由调用方扫描得到，当前工作区在首位。"""
    provider = _require(RUN_ADV_PROVIDER, selection, {p.value for p in Provider})
    options = [
        SelectOption(
            label=f"📍 {ws.name}" if ws.is_current else f"📁 {ws.name}",
            value=workspace_ref(ws.path),
            description=ws.path[-100:],
        )
        for ws in workspaces[:MAX_WORKSPACE_OPTIONS]
    ]
    return WizardPrompt(
        step=RUN_ADV_WORKSPACE,
        title="🚀 Step 2: Select Workspace",
        description=f"Provider: **{provider}**",
        components=[Component(custom_id=correlation.encode(RUN_ADV_WORKSPACE, provider), options=options)],
    )


def on_workspace_selected(fields: dict[str, str], selection: str | None) -> WizardPrompt:
    """第三步：选择角色。"""
    workspace = _require(RUN_ADV_WORKSPACE, selection)
    provider = fields["provider"]
    options = [
        SelectOption(label=f"{role.emoji} {role.name}", value=role.role_id, description=role.description)
        for role in ROLE_DEFINITIONS.values()
    ]
    return WizardPrompt(
        step=RUN_ADV_ROLE,
        title="🚀 Step 3: Select Role",
        description=f"Workspace: `{workspace}`",
        components=[Component(
            custom_id=_fit_token(RUN_ADV_ROLE, provider, workspace=workspace),
            options=options,
        )],
    )


def on_role_selected(
    fields: dict[str, str],
    selection: str | None,
    models: list[ModelDescriptor],
) -> WizardPrompt:
    """第四步：选择模型，或点「自动选择」按钮。"""
    role = _require(RUN_ADV_ROLE, selection, set(ROLE_DEFINITIONS))
    provider = fields["provider"]
    workspace = fields["workspace"]

    options = [
        SelectOption(label=(m.display_name or m.name)[:100], value=m.name)
        for m in models[:MAX_MODEL_OPTIONS]
    ]
    if not options:
        options = [SelectOption(label="Default Model", value="auto")]

    return WizardPrompt(
        step=RUN_ADV_MODEL,
        title="🚀 Step 4: Select Model",
        description=f"Provider: **{provider}**\nRole: **{role}**",
        components=[
            Component(
                custom_id=_fit_token(RUN_ADV_MODEL, provider, role, workspace=workspace),
                options=options,
            ),
            Component(
                type="button",
                custom_id=_fit_token(RUN_ADV_AUTO, provider, role, workspace=workspace),
                label="✨ Auto-Select",
            ),
        ],
    )


def on_model_selected(fields: dict[str, str], selection: str | None) -> StartRequest:
    """终点：手动选定模型。"""
    model = _require(RUN_ADV_MODEL, selection)
    return StartRequest(
        provider=fields["provider"],
        role=fields["role"],
        workspace=fields["workspace"],
        model=model,
    )


def on_auto_selected(fields: dict[str, str]) -> StartRequest:
    """终点：模型交给自动选择。"""
    return StartRequest(
        provider=fields["provider"],
        role=fields["role"],
        workspace=fields["workspace"],
        auto=True,
    )
