"""Provider / 模型解析：带 TTL 缓存的模型目录，以及「自动选择」策略。

- list_models：每个 Provider 单独缓存（默认 300 秒），拉取失败降级为兜底列表，从不抛错；
  同一 Provider 的并发刷新由该 Provider 的锁合并为一次拉取。
- auto_select：按 Provider 查策略表（local / fixed / capability），
  按角色映射到能力类别并沿回退链挑选，最后落到 Provider 默认模型。永远返回非空模型名。
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Literal

from agent_relay.catalog.fetchers import (
    FALLBACK_MODELS,
    STATIC_MODELS,
    BaseCatalogFetcher,
    GeminiModelsFetcher,
    OllamaTagsFetcher,
    StaticCatalogFetcher,
    descriptors,
)
from agent_relay.core.errors import CatalogUnavailable
from agent_relay.models.agent import Provider
from agent_relay.models.protocol import ModelDescriptor

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_TTL = 300.0

# ── 角色 -> 能力类别 ──

CAPABILITY_CLASSES = ("manager", "coder", "architect")

ROLE_CAPABILITY: dict[str, str] = {
    "builder": "coder",
    "tester": "manager",
    "investigator": "architect",
    "architect": "architect",
    "reviewer": "architect",
}

# 某类别没有候选时依次尝试的类别
CLASS_FALLBACK: dict[str, tuple[str, ...]] = {
    "coder": ("coder", "manager", "architect"),
    "manager": ("manager", "coder", "architect"),
    "architect": ("architect", "coder", "manager"),
}

# 本地模型按体积标记分档，靠前的档位更快
_SIZE_TIERS = (
    re.compile(r"(?<![\d.])(1\.5b|3b|7b)\b"),
    re.compile(r"(?<![\d.])14b\b"),
)


@dataclass(frozen=True)
class AutoSelectPolicy:
    kind: Literal["local", "fixed", "capability"]
    default: str


GEMINI_DEFAULT_MODEL = "gemini-3-flash-preview"

AUTO_SELECT_POLICIES: dict[str, AutoSelectPolicy] = {
    Provider.OLLAMA.value: AutoSelectPolicy("local", "deepseek-r1:1.5b"),
    Provider.CURSOR.value: AutoSelectPolicy("fixed", "auto"),
    Provider.CLAUDE_CLI.value: AutoSelectPolicy("fixed", "claude-sonnet-4"),
    Provider.GEMINI_API.value: AutoSelectPolicy("capability", GEMINI_DEFAULT_MODEL),
    Provider.ANTIGRAVITY.value: AutoSelectPolicy("capability", GEMINI_DEFAULT_MODEL),
    Provider.OPENAI.value: AutoSelectPolicy("capability", "gpt-4o"),
    Provider.GROQ.value: AutoSelectPolicy("capability", "llama-3.3-70b-versatile"),
}
_UNKNOWN_PROVIDER_POLICY = AutoSelectPolicy("capability", GEMINI_DEFAULT_MODEL)


def classify(name: str) -> set[str]:
    """按模型名把模型归入能力类别（可同时属于多个）。"""
    n = name.lower()
    classes = set()
    if "flash" in n and "thinking" not in n:
        classes.add("manager")
    if "flash" in n or "thinking" in n:
        classes.add("coder")
    if "pro" in n or "thinking" in n or "exp" in n:
        classes.add("architect")
    return classes


def bucket_models(models: list[ModelDescriptor]) -> dict[str, list[ModelDescriptor]]:
    buckets: dict[str, list[ModelDescriptor]] = {cls: [] for cls in CAPABILITY_CLASSES}
    for model in models:
        for cls in classify(model.name):
            buckets[cls].append(model)
    return buckets


# ── 自动选择策略 ──

def _pick_local(models: list[ModelDescriptor], role: str | None) -> ModelDescriptor | None:
    for tier in _SIZE_TIERS:
        for model in models:
            if tier.search(model.name.lower()):
                return model
    return models[0] if models else None


def _pick_fixed(models: list[ModelDescriptor], role: str | None) -> ModelDescriptor | None:
    return None


def _pick_by_capability(models: list[ModelDescriptor], role: str | None) -> ModelDescriptor | None:
    buckets = bucket_models(models)
    wanted = ROLE_CAPABILITY.get(role or "", "coder")
    for cls in CLASS_FALLBACK[wanted]:
        if buckets[cls]:
            return buckets[cls][0]
    return models[0] if models else None


_STRATEGIES: dict[str, Callable[[list[ModelDescriptor], str | None], ModelDescriptor | None]] = {
    "local": _pick_local,
    "fixed": _pick_fixed,
    "capability": _pick_by_capability,
}


def fallback_models(provider: str) -> list[ModelDescriptor]:
    """Provider 的兜底列表；没有兜底时用静态列表，都没有则为空。"""
    if provider in FALLBACK_MODELS:
        return descriptors(provider, FALLBACK_MODELS[provider], "fallback")
    if provider in STATIC_MODELS:
        return descriptors(provider, STATIC_MODELS[provider], "default")
    return []


def build_fetchers(ollama_base_url: str, gemini_api_key: str | None) -> dict[str, BaseCatalogFetcher]:
    """按配置构造各 Provider 的拉取器。"""
    fetchers: dict[str, BaseCatalogFetcher] = {
        Provider.OLLAMA.value: OllamaTagsFetcher(ollama_base_url),
        Provider.GEMINI_API.value: GeminiModelsFetcher(gemini_api_key),
        Provider.ANTIGRAVITY.value: GeminiModelsFetcher(gemini_api_key, provider=Provider.ANTIGRAVITY.value),
    }
    for provider in STATIC_MODELS:
        fetchers[provider] = StaticCatalogFetcher(provider)
    return fetchers


class ModelCatalog:
    """按 Provider 缓存模型列表，并提供自动选择。"""

    def __init__(
        self,
        fetchers: dict[str, BaseCatalogFetcher] | None = None,
        ttl_seconds: float = DEFAULT_CATALOG_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fetchers = fetchers or {}
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[float, list[ModelDescriptor]]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _fresh(self, provider: str) -> list[ModelDescriptor] | None:
        entry = self._cache.get(provider)
        if entry is None:
            return None
        fetched_at, models = entry
        if self._clock() - fetched_at >= self.ttl_seconds:
            return None
        return models

    async def list_models(self, provider: str) -> list[ModelDescriptor]:
        """返回该 Provider 的模型列表；缓存有效时不发请求，失败时返回兜底列表。"""
        cached = self._fresh(provider)
        if cached is not None:
            return list(cached)

        async with self._locks.setdefault(provider, asyncio.Lock()):
            # 等锁期间可能已有其他请求刷新完毕
            cached = self._fresh(provider)
            if cached is not None:
                return list(cached)

            fetcher = self.fetchers.get(provider)
            if fetcher is None:
                logger.debug("[CATALOG] no fetcher for provider=%s, using fallback", provider)
                return fallback_models(provider)

            try:
                models = await fetcher.fetch()
            except CatalogUnavailable as e:
                logger.warning("[CATALOG] %s", e)
                return fallback_models(provider)
            except Exception as e:
                logger.error("[CATALOG] fetch failed for provider=%s: %s", provider, e, exc_info=True)
                return fallback_models(provider)

            if not models:
                logger.info("[CATALOG] provider=%s returned no models, using fallback", provider)
                return fallback_models(provider)

            self._cache[provider] = (self._clock(), models)
            logger.info("[CATALOG] refreshed provider=%s models=%d", provider, len(models))
            return list(models)

    def invalidate(self, provider: str | None = None) -> None:
        """清除某个 Provider（或全部）的缓存。"""
        if provider is None:
            self._cache.clear()
        else:
            self._cache.pop(provider, None)
        logger.info("[CATALOG] invalidated provider=%s", provider or "*")

    async def models_for_roles(self, provider: str) -> dict[str, list[ModelDescriptor]]:
        """按能力类别分组；每个类别至少补一个候选（有模型可用时）。"""
        models = await self.list_models(provider)
        buckets = bucket_models(models)
        if not models:
            return buckets
        if not buckets["manager"]:
            flash = next((m for m in models if "flash" in m.name), None)
            if flash:
                buckets["manager"].append(flash)
        if not buckets["coder"]:
            buckets["coder"].append(models[0])
        if not buckets["architect"]:
            pro = next((m for m in models if "pro" in m.name), None)
            buckets["architect"].append(pro or models[-1])
        return buckets

    async def auto_select(self, provider: str, role: str | None = None) -> ModelDescriptor:
        """为 (provider, role) 选出一个模型；从不抛错，从不返回空名。"""
        policy = AUTO_SELECT_POLICIES.get(provider, _UNKNOWN_PROVIDER_POLICY)
        models = [] if policy.kind == "fixed" else await self.list_models(provider)
        picked = _STRATEGIES[policy.kind](models, role)
        if picked is None or not picked.name:
            picked = ModelDescriptor(
                name=policy.default,
                display_name=policy.default,
                provider=provider,
                source="default",
            )
        logger.info(
            "[CATALOG] auto_select: provider=%s role=%s policy=%s -> %s (%s)",
            provider, role, policy.kind, picked.name, picked.source,
        )
        return picked
