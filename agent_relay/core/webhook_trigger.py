"""Webhook 触发：向本地自动化服务 POST /api/webhooks/{id}，成功后由路由层启动会话。

对方的处理逻辑对我们不透明，只关心响应是否为 2xx。
"""

from __future__ import annotations

import logging
from datetime import datetime

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

WEBHOOK_TRIGGER_NAME = "discord_run_command"


class WebhookConfig(BaseModel):
    id: str
    name: str
    enabled: bool = True


def agent_for_webhook(webhook: WebhookConfig) -> str:
    """名字里带 cursor 的 webhook 交给 cursor-coder，其余交给 ag-coder。"""
    return "cursor-coder" if "cursor" in webhook.name.lower() else "ag-coder"


class WebhookTrigger:
    """按 id 查找已启用的 webhook 并触发。"""

    def __init__(
        self,
        webhooks: list[WebhookConfig] | None = None,
        base_url: str = "http://localhost:8000",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhooks = {w.id: w for w in webhooks or []}
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def get(self, webhook_id: str) -> WebhookConfig | None:
        """只返回已启用的 webhook。"""
        webhook = self.webhooks.get(webhook_id)
        return webhook if webhook and webhook.enabled else None

    def list_enabled(self) -> list[WebhookConfig]:
        return [w for w in self.webhooks.values() if w.enabled]

    async def trigger(self, webhook: WebhookConfig, user_id: str, channel_id: str) -> bool:
        """发出触发请求；2xx 返回 True，其余（含网络错误）返回 False。"""
        payload = {
            "trigger": WEBHOOK_TRIGGER_NAME,
            "userId": user_id,
            "channelId": channel_id,
            "timestamp": datetime.now().isoformat(),
        }
        url = f"{self.base_url}/api/webhooks/{webhook.id}"
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error("[WEBHOOK] %s (%s) request failed: %s", webhook.name, webhook.id, e)
            return False

        if not response.is_success:
            logger.warning(
                "[WEBHOOK] %s (%s) returned %d: %s",
                webhook.name, webhook.id, response.status_code, response.text[:200],
            )
            return False
        logger.info("[WEBHOOK] triggered %s (%s) for user_id=%s channel_id=%s", webhook.name, webhook.id, user_id, channel_id)
        return True
