"""对话轮次执行器：把频道消息交给当前会话的 Agent，并把回复切成可发送的分片。

- 每个 (user_id, channel_id) 同一时间至多一个进行中的轮次；新消息会取代尚未完成的旧轮次；
- 会话被 start / switch / end 时，路由层调用 cancel()，被取消的轮次丢弃已有输出，什么都不发；
- 超时得到明确的 failed 结果，而不是无限等待；
- 只有 completed 的轮次调用一次 record_turn。
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid

from agent_relay.core.delivery import chunk_messages
from agent_relay.core.segmenter import PlatformLimits, segment
from agent_relay.core.session_registry import SessionKey, SessionRegistry
from agent_relay.core.turn_logger import TurnLog, TurnLogger
from agent_relay.models.protocol import ChatRequest, ChatResult, TurnOutcome
from agent_relay.models.session import Session
from agent_relay.registry.agent_registry import AgentRegistry, resolve_effective_agent
from agent_relay.worker.runtime import WorkerRuntime

logger = logging.getLogger(__name__)

DEFAULT_TURN_TIMEOUT = 300.0


class ChatTurnRunner:
    """执行对话轮次，维护每个 key 的进行中任务。"""

    def __init__(
        self,
        sessions: SessionRegistry,
        agents: AgentRegistry,
        runtime: WorkerRuntime,
        turn_logger: TurnLogger | None = None,
        timeout_seconds: float = DEFAULT_TURN_TIMEOUT,
        max_len: int = PlatformLimits.CONTENT,
    ):
        self.sessions = sessions
        self.agents = agents
        self.runtime = runtime
        self.turn_logger = turn_logger
        self.timeout_seconds = timeout_seconds
        self.max_len = max_len
        self._inflight: dict[SessionKey, asyncio.Task] = {}

    def in_flight(self, user_id: str, channel_id: str) -> bool:
        task = self._inflight.get((user_id, channel_id))
        return task is not None and not task.done()

    def cancel(self, user_id: str, channel_id: str) -> bool:
        """取消该 key 进行中的轮次；没有则返回 False。"""
        task = self._inflight.get((user_id, channel_id))
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("[TURN] cancel requested: user_id=%s channel_id=%s", user_id, channel_id)
        return True

    def cancel_all(self) -> int:
        cancelled = 0
        for task in self._inflight.values():
            if not task.done():
                task.cancel()
                cancelled += 1
        return cancelled

    async def run_turn(self, user_id: str, channel_id: str, message: str) -> TurnOutcome:
        """执行一轮对话。没有活跃会话时返回 failed；Agent 不存在时抛 UnknownAgent。"""
        session = self.sessions.get_active_session(user_id, channel_id)
        if session is None:
            return TurnOutcome(status="failed", error="No active agent session in this channel.")

        agent = resolve_effective_agent(self.agents.get_agent(session.agent_id), session)
        request = ChatRequest(
            session_id=session.id,
            turn_id=uuid.uuid4().hex[:12],
            user_id=user_id,
            channel_id=channel_id,
            agent=agent,
            message=message,
        )

        key = (user_id, channel_id)
        if self.cancel(user_id, channel_id):
            logger.info("[TURN] superseded previous turn: user_id=%s channel_id=%s", user_id, channel_id)

        task = asyncio.create_task(self.runtime.chat(request))
        self._inflight[key] = task
        started = time.monotonic()
        try:
            done, _ = await asyncio.wait({task}, timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            # 调用方自己被取消（例如连接断开）：后端任务一并取消
            task.cancel()
            raise
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

        if not done:
            task.cancel()
            outcome = self._failed(request, f"Agent did not respond within {self.timeout_seconds:g}s.")
        elif task.cancelled() or not self._still_active(session, key):
            outcome = TurnOutcome(status="cancelled", session_id=session.id, turn_id=request.turn_id)
        elif task.exception() is not None:
            outcome = self._failed(request, str(task.exception()) or type(task.exception()).__name__)
        else:
            outcome = await self._complete(request, task.result())

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "[TURN] %s: session_id=%s turn_id=%s agent_id=%s chunks=%d duration=%dms",
            outcome.status, session.id, request.turn_id, agent.agent_id, len(outcome.chunks), duration_ms,
        )
        self._log_turn(request, outcome, duration_ms, task)
        return outcome

    def _still_active(self, session: Session, key: SessionKey) -> bool:
        """后端返回后会话可能已被结束或替换，此时结果作废。"""
        current = self.sessions.get_active_session(*key)
        return current is not None and current.id == session.id

    async def _complete(self, request: ChatRequest, result: ChatResult) -> TurnOutcome:
        if result.is_error:
            return self._failed(request, result.content or "Agent returned an error.")
        chunks = segment(result.content, self.max_len)
        await self.sessions.record_turn(request.session_id, result.cost_usd)
        return TurnOutcome(
            status="completed",
            session_id=request.session_id,
            turn_id=request.turn_id,
            chunks=chunks,
            messages=chunk_messages(chunks),
        )

    def _failed(self, request: ChatRequest, error: str) -> TurnOutcome:
        return TurnOutcome(
            status="failed",
            session_id=request.session_id,
            turn_id=request.turn_id,
            error=error,
        )

    def _log_turn(self, request: ChatRequest, outcome: TurnOutcome, duration_ms: int, task: asyncio.Task) -> None:
        if self.turn_logger is None:
            return
        result = None
        if task.done() and not task.cancelled() and task.exception() is None:
            result = task.result()
        try:
            self.turn_logger.save(TurnLog(
                session_id=request.session_id,
                turn_id=request.turn_id,
                user_id=request.user_id,
                channel_id=request.channel_id,
                agent_id=request.agent.agent_id,
                model=request.agent.model,
                provider=request.agent.provider,
                status=outcome.status,
                prompt=request.message,
                response=result.content if result and outcome.status == "completed" else "",
                error=outcome.error,
                chunk_count=len(outcome.chunks),
                duration_ms=duration_ms,
                cost_usd=result.cost_usd if result and outcome.status == "completed" else 0.0,
            ))
        except OSError as e:
            logger.error("[TURN] failed to write turn log: %s", e)
