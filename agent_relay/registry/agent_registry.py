"""Agent 注册表：从 agents 目录的 YAML 加载 Agent 模板，支持动态注册、按能力搜索与重载。

注册表只保存不可变的 AgentConfig；会话级覆盖由 resolve_effective_agent 在读取时叠加。
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from agent_relay.core.errors import UnknownAgent
from agent_relay.models.agent import PROVIDER_CLIENTS, AgentConfig
from agent_relay.models.session import EffectiveAgent, Session
from agent_relay.registry.roles import get_role

logger = logging.getLogger(__name__)

# 不允许注销的管理型 Agent
PROTECTED_AGENT_PREFIX = "ag-manager"


class AgentRegistry:
    """内存中的 Agent 模板表：agent_id -> AgentConfig，支持从目录加载与重载。"""

    def __init__(self, config_dir: str = "agents/"):
        """指定配置目录并立即从该目录加载所有 *.yaml。"""
        self.agents: dict[str, AgentConfig] = {}
        self.config_dir = config_dir
        self._load_from_dir(config_dir)

    def _load_from_dir(self, config_dir: str) -> None:
        """遍历目录下所有 .yaml 文件，解析为 AgentConfig 并写入 self.agents。"""
        config_path = Path(config_dir)
        if not config_path.exists():
            logger.warning(f"Agent config directory not found: {config_dir}")
            return

        for file in sorted(config_path.glob("*.yaml")):
            try:
                config = self._load_config(file)
                self.agents[config.agent_id] = config
                logger.info(
                    f"Loaded agent: {config.agent_id} ({config.display_name}) "
                    f"provider={config.provider.value} risk={config.risk_level}"
                )
            except Exception as e:
                logger.error(f"Failed to load agent from {file}: {e}")

    def _load_config(self, file: Path) -> AgentConfig:
        """读取单个 YAML 文件并构造 AgentConfig；未写 agent_id 时以文件名为准。"""
        with open(file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        data.setdefault("agent_id", file.stem)
        return AgentConfig.model_validate(data)

    def register_agent(self, config: AgentConfig) -> None:
        """将一名 Agent 加入注册表；同 id 会覆盖。"""
        if config.agent_id in self.agents:
            logger.warning(f"Overwriting existing agent: {config.agent_id}")
        self.agents[config.agent_id] = config
        logger.info(f"Registered agent: {config.agent_id} ({config.display_name})")

    def unregister_agent(self, agent_id: str) -> bool:
        """从注册表移除指定 Agent；管理型 Agent 不可移除。"""
        if agent_id.startswith(PROTECTED_AGENT_PREFIX):
            raise ValueError("Cannot unregister the manager agent")
        removed = self.agents.pop(agent_id, None) is not None
        if removed:
            logger.info(f"Unregistered agent: {agent_id}")
        return removed

    def get_agent(self, agent_id: str) -> AgentConfig:
        """按 agent_id 获取模板；不存在则抛 UnknownAgent（KeyError 子类）。"""
        if agent_id not in self.agents:
            raise UnknownAgent(agent_id)
        return self.agents[agent_id]

    def has_agent(self, agent_id: str) -> bool:
        return agent_id in self.agents

    def list_agents(self) -> list[AgentConfig]:
        """返回当前所有已注册 Agent 的列表。"""
        return list(self.agents.values())

    def find_by_capability(self, capability: str) -> list[AgentConfig]:
        """按能力过滤：capabilities 中含有该项的 Agent。"""
        return [a for a in self.agents.values() if capability in a.capabilities]

    def reload(self) -> None:
        """清空当前表并从 config_dir 重新加载所有 YAML。"""
        self.agents.clear()
        self._load_from_dir(self.config_dir)


def resolve_effective_agent(agent: AgentConfig, session: Session | None = None) -> EffectiveAgent:
    """把会话覆盖叠加到模板上，得到本轮实际使用的配置；模板本身不被修改。"""
    provider = agent.provider.value
    model = agent.default_model
    role_id = None
    workspace = None
    system_prompt = agent.system_prompt

    if session is not None:
        provider = session.provider_override or provider
        model = session.model_override or model
        role_id = session.role_override
        workspace = session.workspace_override

    role = get_role(role_id)
    if role is not None:
        system_prompt = f"{system_prompt}\n\n{role.system_prompt_addition}".strip()

    return EffectiveAgent(
        agent_id=agent.agent_id,
        display_name=agent.display_name or agent.agent_id,
        model=model,
        provider=provider,
        client=PROVIDER_CLIENTS.get(provider, provider),
        system_prompt=system_prompt,
        temperature=agent.temperature,
        max_output_tokens=agent.max_output_tokens,
        role_id=role_id,
        workspace=workspace,
    )
