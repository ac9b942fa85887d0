"""运行配置：从 config/relay.yaml 读取，环境变量可覆盖其中的敏感项与部署相关项。

文件不存在时使用全部默认值；字段校验由 pydantic 完成。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from agent_relay.core.webhook_trigger import WebhookConfig
from agent_relay.worker.runtime import AdapterConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/relay.yaml"

# 环境变量 -> 配置字段；同一字段列出多个变量时取第一个有值的
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "owner_id": ("OWNER_ID",),
    "ollama_base_url": ("OLLAMA_BASE_URL",),
    "gemini_api_key": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "log_level": ("RELAY_LOG_LEVEL",),
}


class RelaySettings(BaseModel):
    agents_dir: str = "agents"
    workspaces_root: str = "workspaces"
    data_dir: str = "data"
    log_level: str = "INFO"

    owner_id: str | None = None          # 设置后，高风险 Agent 只允许此用户启动
    default_agent: str = "general-assistant"

    catalog_ttl_seconds: float = 300.0
    turn_timeout_seconds: float = 300.0
    ollama_base_url: str = "http://localhost:11434"
    gemini_api_key: str | None = None

    webhook_base_url: str = "http://localhost:8000"
    webhooks: list[WebhookConfig] = Field(default_factory=list)

    # 聊天后端：client 名 -> "模块:类名"，启动时导入；为空时只是一个没有后端的宿主
    adapters: list[AdapterConfig] = Field(default_factory=list)

    archive_enabled: bool = True
    max_finished_sessions: int = 1000   # 内存里保留的已结束会话数，更早的只在归档里

    @property
    def archive_path(self) -> str:
        return str(Path(self.data_dir) / "agent_relay.db")

    @property
    def turn_log_dir(self) -> str:
        return str(Path(self.data_dir) / "logs")


def load_settings(path: str = DEFAULT_CONFIG_PATH, environ: dict[str, str] | None = None) -> RelaySettings:
    """读取 YAML 配置并叠加环境变量。"""
    environ = os.environ if environ is None else environ
    data: dict = {}
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded settings from %s", config_path)
    else:
        logger.info("Settings file %s not found, using defaults", config_path)

    for field, names in ENV_OVERRIDES.items():
        for name in names:
            if environ.get(name):
                data[field] = environ[name]
                break

    return RelaySettings.model_validate(data)
