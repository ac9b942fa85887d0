"""模型目录拉取器：每个 Provider 一个，负责从远端或静态表取得可用模型列表。

拉取失败一律抛 CatalogUnavailable，由 ModelCatalog 降级为兜底列表；拉取器本身不做缓存。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from agent_relay.core.errors import CatalogUnavailable
from agent_relay.models.agent import Provider
from agent_relay.models.protocol import ModelDescriptor

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

# 在线目录不可用时的兜底列表
FALLBACK_MODELS: dict[str, list[tuple[str, str]]] = {
    Provider.OLLAMA.value: [
        ("deepseek-r1:1.5b", "DeepSeek R1 1.5B"),
        ("deepseek-r1:7b", "DeepSeek R1 7B"),
        ("llama3.2:3b", "Llama 3.2 3B"),
        ("qwen2.5:7b", "Qwen 2.5 7B"),
    ],
    Provider.GEMINI_API.value: [
        ("gemini-3-flash", "Gemini 3 Flash"),
        ("gemini-2.0-flash", "Gemini 2.0 Flash"),
        ("gemini-2.0-flash-exp", "Gemini 2.0 Flash (Experimental)"),
        ("gemini-2.0-flash-thinking-exp", "Gemini 2.0 Flash Thinking"),
        ("gemini-1.5-flash", "Gemini 1.5 Flash"),
        ("gemini-1.5-flash-latest", "Gemini 1.5 Flash (Latest)"),
        ("gemini-1.5-pro", "Gemini 1.5 Pro"),
        ("gemini-1.5-pro-latest", "Gemini 1.5 Pro (Latest)"),
    ],
}
FALLBACK_MODELS[Provider.ANTIGRAVITY.value] = FALLBACK_MODELS[Provider.GEMINI_API.value]

# 没有在线目录的 Provider：固定列表
STATIC_MODELS: dict[str, list[tuple[str, str]]] = {
    Provider.CURSOR.value: [
        ("auto", "Auto (Cursor picks)"),
        ("sonnet-4", "Claude Sonnet 4"),
        ("sonnet-4-thinking", "Claude Sonnet 4 Thinking"),
        ("opus-4", "Claude Opus 4"),
        ("gpt-5", "GPT-5"),
        ("gpt-4o", "GPT-4o"),
        ("o1", "o1"),
        ("gemini-2.5-pro", "Gemini 2.5 Pro"),
    ],
    Provider.CLAUDE_CLI.value: [
        ("claude-sonnet-4", "Claude Sonnet 4"),
        ("claude-opus-4", "Claude Opus 4"),
        ("claude-haiku", "Claude Haiku"),
        ("sonnet", "Sonnet (latest)"),
        ("opus", "Opus (latest)"),
    ],
    Provider.OPENAI.value: [
        ("gpt-4o", "GPT-4o"),
        ("gpt-4o-mini", "GPT-4o Mini"),
        ("o1", "o1"),
        ("o1-mini", "o1 Mini"),
        ("o3-mini", "o3 Mini"),
        ("gpt-4-turbo", "GPT-4 Turbo"),
    ],
    Provider.GROQ.value: [
        ("llama-3.3-70b-versatile", "Llama 3.3 70B Versatile"),
        ("llama-3.1-8b-instant", "Llama 3.1 8B Instant"),
        ("mixtral-8x7b-32768", "Mixtral 8x7B"),
    ],
}


def descriptors(provider: str, entries: list[tuple[str, str]], source: str) -> list[ModelDescriptor]:
    return [
        ModelDescriptor(name=name, display_name=display, provider=provider, source=source)
        for name, display in entries
    ]


class BaseCatalogFetcher(ABC):
    """所有目录拉取器的基类。"""

    provider: str = ""

    @abstractmethod
    async def fetch(self) -> list[ModelDescriptor]:
        """返回当前可用模型；失败抛 CatalogUnavailable。"""
        ...


class StaticCatalogFetcher(BaseCatalogFetcher):
    """返回固定列表，用于没有在线目录的 Provider。"""

    def __init__(self, provider: str, entries: list[tuple[str, str]] | None = None):
        self.provider = provider
        self.entries = entries if entries is not None else STATIC_MODELS.get(provider, [])

    async def fetch(self) -> list[ModelDescriptor]:
        return descriptors(self.provider, self.entries, "default")


class OllamaTagsFetcher(BaseCatalogFetcher):
    """读取本地 Ollama 服务的 /api/tags。"""

    provider = Provider.OLLAMA.value

    def __init__(self, base_url: str = "http://localhost:11434", timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch(self) -> list[ModelDescriptor]:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{self.base_url}/api/tags", timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CatalogUnavailable(self.provider, str(e)) from e

        names = [m["name"] for m in data.get("models") or [] if m.get("name")]
        logger.debug("[CATALOG] ollama tags: %s", names)
        return [ModelDescriptor(name=n, display_name=n, provider=self.provider, source="live") for n in names]


class GeminiModelsFetcher(BaseCatalogFetcher):
    """调用 Gemini REST 接口列出模型，只保留支持 generateContent 的，按名称排序。"""

    def __init__(
        self,
        api_key: str | None,
        provider: str = Provider.GEMINI_API.value,
        base_url: str = GEMINI_API_BASE,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def fetch(self) -> list[ModelDescriptor]:
        if not self.api_key:
            raise CatalogUnavailable(self.provider, "no API key configured")
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(
                    f"{self.base_url}/models",
                    params={"key": self.api_key},
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            # 异常信息里可能带有 key，不原样透出 URL
            raise CatalogUnavailable(self.provider, type(e).__name__) from e

        models = []
        for item in data.get("models") or []:
            methods = item.get("supportedGenerationMethods") or []
            if "generateContent" not in methods:
                continue
            name = item.get("name", "").removeprefix("models/")
            if not name:
                continue
            models.append(ModelDescriptor(
                name=name,
                display_name=item.get("displayName") or name,
                provider=self.provider,
                description=item.get("description") or "",
                source="live",
            ))
        models.sort(key=lambda m: m.name)
        return models
