"""Webhook 触发测试。"""

import json

import httpx
import pytest

from agent_relay.core.webhook_trigger import WebhookConfig, WebhookTrigger, agent_for_webhook

HOOKS = [
    WebhookConfig(id="cursor-nightly", name="Cursor Nightly"),
    WebhookConfig(id="ag-triage", name="AG Triage", enabled=False),
]


def _trigger(handler):
    return WebhookTrigger(HOOKS, base_url="http://automation.local:8000/", transport=httpx.MockTransport(handler))


async def test_trigger_posts_payload():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    trigger = _trigger(handler)
    assert await trigger.trigger(trigger.get("cursor-nightly"), "u1", "c1")

    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "http://automation.local:8000/api/webhooks/cursor-nightly"
    body = json.loads(request.content)
    assert body["trigger"] == "discord_run_command"
    assert (body["userId"], body["channelId"]) == ("u1", "c1")
    assert "timestamp" in body


@pytest.mark.parametrize("status", [400, 404, 500])
async def test_non_2xx_is_failure(status):
    trigger = _trigger(lambda request: httpx.Response(status, text="nope"))
    assert not await trigger.trigger(HOOKS[0], "u1", "c1")


async def test_network_error_is_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert not await _trigger(handler).trigger(HOOKS[0], "u1", "c1")


def test_disabled_webhooks_are_hidden():
    trigger = WebhookTrigger(HOOKS)
    assert trigger.get("ag-triage") is None
    assert trigger.get("missing") is None
    assert [w.id for w in trigger.list_enabled()] == ["cursor-nightly"]


def test_agent_for_webhook():
    assert agent_for_webhook(HOOKS[0]) == "cursor-coder"
    assert agent_for_webhook(HOOKS[1]) == "ag-coder"
