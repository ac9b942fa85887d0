"""交互路由：把平台事件（斜杠命令、组件激活、频道消息）分派给核心组件，返回要发出的消息。

路由层是唯一把核心错误翻译成用户可见回复的地方：
- MalformedToken -> 「选择已过期或无效」
- UnknownAgent   -> 「Agent 不存在」，不创建会话
- AccessDenied   -> 高风险 Agent 只允许 owner 启动
其他异常照常抛出，由 HTTP 层转成 500。
"""

from __future__ import annotations

import asyncio
import logging

from agent_relay.catalog.resolver import ModelCatalog
from agent_relay.core import correlation, delivery, wizard
from agent_relay.core.chat_runner import ChatTurnRunner
from agent_relay.core.correlation import (
    PICK_AGENT,
    PICK_WEBHOOK,
    RUN_ADV_AUTO,
    RUN_ADV_MODEL,
    RUN_ADV_PROVIDER,
    RUN_ADV_ROLE,
    RUN_ADV_WORKSPACE,
)
from agent_relay.core.delivery import Colors
from agent_relay.core.errors import AccessDenied, MalformedToken, UnknownAgent
from agent_relay.core.session_registry import SessionRegistry
from agent_relay.core.webhook_trigger import WebhookTrigger, agent_for_webhook
from agent_relay.models.agent import AgentConfig
from agent_relay.models.protocol import (
    CommandEvent,
    Component,
    ComponentEvent,
    MessageEvent,
    OutboundMessage,
    RouterReply,
    SelectOption,
)
from agent_relay.models.session import Session
from agent_relay.registry.agent_registry import AgentRegistry, resolve_effective_agent
from agent_relay.registry.roles import get_role
from agent_relay.workspace.scanner import WorkspaceScanner

logger = logging.getLogger(__name__)

# Agent 选择下拉菜单的固定 custom_id；选项值本身是 pick-agent / pick-webhook 令牌
AGENT_PICKER_ID = "select-agent-model"
MAX_PICKER_OPTIONS = 25

_RISK_EMOJI = {"high": "🔴", "medium": "🟡", "low": "🟢"}
_RISK_COLOR = {"high": 0xFF6600, "medium": Colors.WARNING, "low": Colors.SUCCESS}


def _reply(*messages: OutboundMessage, ok: bool = True, session: Session | None = None) -> RouterReply:
    return RouterReply(ok=ok, messages=list(messages), session_id=session.id if session else None)


def _error(title: str, description: str = "") -> RouterReply:
    return _reply(delivery.error_notice(title, description), ok=False)


class InteractionRouter:
    """平台事件入口。"""

    def __init__(
        self,
        sessions: SessionRegistry,
        agents: AgentRegistry,
        catalog: ModelCatalog,
        chat_runner: ChatTurnRunner,
        workspaces: WorkspaceScanner,
        webhooks: WebhookTrigger,
        owner_id: str | None = None,
        default_agent: str = "general-assistant",
    ):
        self.sessions = sessions
        self.agents = agents
        self.catalog = catalog
        self.chat_runner = chat_runner
        self.workspaces = workspaces
        self.webhooks = webhooks
        self.owner_id = owner_id
        self.default_agent = default_agent

        self._commands = {
            "agent": self._agent_command,
            "run": self._run,
            "run-adv": self._run_adv,
            "kill": self._kill,
        }
        self._agent_actions = {
            "start": self._agent_start,
            "switch": self._agent_switch,
            "end": self._agent_end,
            "status": self._agent_status,
            "list": self._agent_list,
            "info": self._agent_info,
            "pick": self._agent_pick,
        }
        self._wizard_steps = {
            RUN_ADV_PROVIDER: self._wizard_provider,
            RUN_ADV_WORKSPACE: self._wizard_workspace,
            RUN_ADV_ROLE: self._wizard_role,
            RUN_ADV_MODEL: self._wizard_model,
            RUN_ADV_AUTO: self._wizard_auto,
        }

    # ── 入口 ──

    async def handle_command(self, event: CommandEvent) -> RouterReply:
        logger.info(
            "[ROUTER] command: /%s %s user_id=%s channel_id=%s",
            event.command, event.action, event.user_id, event.channel_id,
        )
        handler = self._commands.get(event.command)
        if handler is None:
            return _error("Unknown Command", f"`/{event.command}` is not supported.")
        return await self._guard(handler(event))

    async def handle_component(self, event: ComponentEvent) -> RouterReply:
        logger.info(
            "[ROUTER] component: custom_id=%s values=%s user_id=%s channel_id=%s",
            event.custom_id, event.values, event.user_id, event.channel_id,
        )
        return await self._guard(self._dispatch_component(event))

    async def handle_message(self, event: MessageEvent) -> RouterReply:
        """频道消息：有活跃会话时交给当前 Agent，否则忽略（不回复）。"""
        if self.sessions.get_active_session(event.user_id, event.channel_id) is None:
            logger.debug("[ROUTER] message ignored, no active session: channel_id=%s", event.channel_id)
            return _reply()
        return await self._guard(self._chat(event))

    async def _guard(self, pending) -> RouterReply:
        try:
            return await pending
        except MalformedToken as e:
            logger.warning("[ROUTER] %s", e)
            return _error("Selection Expired", "This selection has expired or is invalid. Please start again.")
        except UnknownAgent as e:
            logger.warning("[ROUTER] %s", e)
            return _error("Agent Not Found", f"Agent `{e.agent_id}` not found.")
        except AccessDenied as e:
            logger.warning("[ROUTER] %s", e)
            return _error("Access Denied", f"Only the bot owner can start high-risk agent `{e.agent_id}`.")

    # ── 命令 ──

    async def _agent_command(self, event: CommandEvent) -> RouterReply:
        handler = self._agent_actions.get(event.action or "status")
        if handler is None:
            return _error("Unknown Action", f"`/agent {event.action}` is not supported.")
        return await handler(event)

    async def _run(self, event: CommandEvent) -> RouterReply:
        return await self._start(event.user_id, event.channel_id, self.default_agent)

    async def _run_adv(self, event: CommandEvent) -> RouterReply:
        return _reply(wizard.provider_prompt().to_message())

    async def _kill(self, event: CommandEvent) -> RouterReply:
        return await self._agent_end(event)

    async def _agent_start(self, event: CommandEvent) -> RouterReply:
        opts = event.options
        return await self._start(
            event.user_id,
            event.channel_id,
            opts.get("agent") or self.default_agent,
            role=opts.get("role"),
            model=opts.get("model"),
        )

    async def _agent_switch(self, event: CommandEvent) -> RouterReply:
        agent_id = event.options.get("agent")
        if not agent_id:
            return _error("Missing Agent", "Usage: `/agent switch agent:<agent_id>`")
        return await self._start(event.user_id, event.channel_id, agent_id, switch=True)

    async def _agent_end(self, event: CommandEvent) -> RouterReply:
        self.chat_runner.cancel(event.user_id, event.channel_id)
        retired = await self.sessions.end_session(event.user_id, event.channel_id)
        if not retired:
            return _reply(OutboundMessage(content="No active session to end.", ephemeral=True))
        return _reply(delivery.notice(
            "🛑 Agent Stopped",
            f"Ended {len(retired)} session(s).",
            color=Colors.SUCCESS,
            fields={
                "Messages": str(sum(s.message_count for s in retired)),
                "Cost": f"${sum(s.accumulated_cost for s in retired):.4f}",
            },
        ))

    async def _agent_status(self, event: CommandEvent) -> RouterReply:
        session = self.sessions.get_active_session(event.user_id, event.channel_id)
        if session is None:
            return _reply(OutboundMessage(content="No active agent session in this channel.", ephemeral=True))
        agent = resolve_effective_agent(self.agents.get_agent(session.agent_id), session)
        return _reply(delivery.notice(
            "📊 Agent Session",
            fields={
                "Agent": agent.display_name,
                "Model": agent.model or "-",
                "Provider": agent.provider,
                "Role": agent.role_id or "-",
                "Workspace": agent.workspace or "Default",
                "Messages": str(session.message_count),
                "Cost": f"${session.accumulated_cost:.4f}",
                "Status": session.status,
                "Started": session.start_time.strftime("%Y-%m-%d %H:%M:%S"),
            },
            footer=f"Session {session.id}",
        ), session=session)

    async def _agent_list(self, event: CommandEvent) -> RouterReply:
        lines = [
            f"{_RISK_EMOJI[a.risk_level]} **{a.display_name or a.agent_id}** (`{a.agent_id}`)\n"
            f"   {a.description}\n"
            f"   Capabilities: {', '.join(sorted(a.capabilities)) or '-'}"
            for a in self.agents.list_agents()
        ]
        return _reply(*delivery.embed_pages("\n\n".join(lines) or "No agents configured.", "🤖 Available Agents"))

    async def _agent_info(self, event: CommandEvent) -> RouterReply:
        agent = self.agents.get_agent(event.options.get("agent") or self.default_agent)
        return _reply(delivery.notice(
            f"🤖 {agent.display_name or agent.agent_id}",
            agent.description,
            color=_RISK_COLOR[agent.risk_level],
            fields={
                "Model": agent.default_model or "-",
                "Provider": agent.provider.value,
                "Risk Level": agent.risk_level.upper(),
                "Capabilities": ", ".join(sorted(agent.capabilities)) or "-",
            },
        ))

    async def _agent_pick(self, event: CommandEvent) -> RouterReply:
        options = [
            SelectOption(
                label=f"{_RISK_EMOJI[a.risk_level]} {a.display_name or a.agent_id}"[:100],
                value=correlation.encode(PICK_AGENT, a.agent_id, a.default_model),
                description=a.default_model[:100],
            )
            for a in self.agents.list_agents()
        ]
        options += [
            SelectOption(label=f"🔗 {w.name}"[:100], value=correlation.encode(PICK_WEBHOOK, w.id), description="Webhook")
            for w in self.webhooks.list_enabled()
        ]
        options = [o for o in options if correlation.fits_platform(o.value)][:MAX_PICKER_OPTIONS]
        return _reply(OutboundMessage(
            embeds=[delivery.notice("🤖 Pick an Agent").embeds[0]],
            components=[Component(custom_id=AGENT_PICKER_ID, label="Select an agent...", options=options)],
        ))

    # ── 组件 ──

    async def _dispatch_component(self, event: ComponentEvent) -> RouterReply:
        if event.custom_id == AGENT_PICKER_ID:
            if not event.values:
                raise MalformedToken(PICK_AGENT, "", "no selection")
            decoded = correlation.parse(event.values[0])
            if decoded.step == PICK_AGENT:
                fields = decoded.as_dict()
                return await self._start(event.user_id, event.channel_id, fields["agent_id"], model=fields["model"] or None)
            if decoded.step == PICK_WEBHOOK:
                return await self._run_webhook(event, decoded.as_dict()["webhook_id"])
            raise MalformedToken(decoded.step, event.values[0], "not an agent picker value")

        decoded = correlation.parse(event.custom_id)
        step = self._wizard_steps.get(decoded.step)
        if step is None:
            raise MalformedToken(decoded.step, event.custom_id, "not a wizard step")
        selection = event.values[0] if event.values else None
        return await step(event, decoded.as_dict(), selection)

    async def _wizard_provider(self, event: ComponentEvent, fields: dict, selection: str | None) -> RouterReply:
        workspaces = await asyncio.to_thread(self.workspaces.options)
        return _reply(wizard.on_provider_selected(selection, workspaces).to_message())

    async def _wizard_workspace(self, event: ComponentEvent, fields: dict, selection: str | None) -> RouterReply:
        return _reply(wizard.on_workspace_selected(fields, selection).to_message())

    async def _wizard_role(self, event: ComponentEvent, fields: dict, selection: str | None) -> RouterReply:
        models = await self.catalog.list_models(fields["provider"])
        return _reply(wizard.on_role_selected(fields, selection, models).to_message())

    async def _wizard_model(self, event: ComponentEvent, fields: dict, selection: str | None) -> RouterReply:
        return await self._start_from_wizard(event, wizard.on_model_selected(fields, selection))

    async def _wizard_auto(self, event: ComponentEvent, fields: dict, selection: str | None) -> RouterReply:
        return await self._start_from_wizard(event, wizard.on_auto_selected(fields))

    async def _start_from_wizard(self, event: ComponentEvent, request: wizard.StartRequest) -> RouterReply:
        model = request.model
        if request.auto:
            model = (await self.catalog.auto_select(request.provider, request.role)).name
        workspace = await asyncio.to_thread(self.workspaces.resolve, request.workspace)
        return await self._start(
            event.user_id,
            event.channel_id,
            request.agent_id,
            role=request.role,
            workspace=workspace,
            model=model,
            provider=request.provider,
            title="✅ Session Started (Auto-Selected)" if request.auto else "✅ Session Started",
        )

    async def _run_webhook(self, event: ComponentEvent, webhook_id: str) -> RouterReply:
        webhook = self.webhooks.get(webhook_id)
        if webhook is None:
            return _error("Webhook Unavailable", f"Webhook `{webhook_id}` not found or disabled.")
        agent_id = agent_for_webhook(webhook)
        self._check_access(self.agents.get_agent(agent_id), event.user_id)
        if not await self.webhooks.trigger(webhook, event.user_id, event.channel_id):
            return _error("Webhook Failed", f"**{webhook.name}** could not be triggered.")
        return await self._start(event.user_id, event.channel_id, agent_id, title="🔗 Webhook Triggered")

    # ── 会话 ──

    def _check_access(self, agent: AgentConfig, user_id: str) -> None:
        if self.owner_id and agent.risk_level == "high" and user_id != self.owner_id:
            raise AccessDenied(agent.agent_id, user_id)

    async def _start(
        self,
        user_id: str,
        channel_id: str,
        agent_id: str,
        role: str | None = None,
        workspace: str | None = None,
        model: str | None = None,
        provider: str | None = None,
        switch: bool = False,
        title: str = "",
    ) -> RouterReply:
        """校验 Agent 与权限，取消进行中的轮次，然后启动（或切换）会话。"""
        agent = self.agents.get_agent(agent_id)
        self._check_access(agent, user_id)
        if role and get_role(role) is None:
            return _error("Unknown Role", f"Role `{role}` does not exist.")

        self.chat_runner.cancel(user_id, channel_id)
        start = self.sessions.switch_session if switch else self.sessions.start_session
        session = await start(
            user_id,
            channel_id,
            agent_id,
            role_override=role,
            workspace_override=workspace,
            model_override=model,
            provider_override=provider,
        )

        effective = resolve_effective_agent(agent, session)
        role_def = get_role(effective.role_id)
        fields = {
            "Agent": effective.display_name,
            "Risk Level": agent.risk_level.upper(),
            "Model": effective.model or "-",
            "Provider": effective.provider,
        }
        if role_def:
            fields["Role"] = f"{role_def.emoji} {role_def.name}"
        if effective.workspace:
            fields["Workspace"] = f"`{effective.workspace}`"
        return _reply(delivery.notice(
            title or ("🔄 Agent Switched" if switch else "🚀 Agent Session Started"),
            agent.description,
            color=_RISK_COLOR[agent.risk_level],
            fields=fields,
            footer="You can now chat with this agent in this channel.",
        ), session=session)

    async def _chat(self, event: MessageEvent) -> RouterReply:
        outcome = await self.chat_runner.run_turn(event.user_id, event.channel_id, event.content)
        if outcome.status == "cancelled":
            return RouterReply(ok=True, session_id=outcome.session_id)
        if outcome.status == "failed":
            reply = _error("Agent Error", outcome.error)
            reply.session_id = outcome.session_id
            return reply
        messages = outcome.messages or [OutboundMessage(content="_(empty response)_")]
        return RouterReply(ok=True, messages=messages, session_id=outcome.session_id)
