"""对话轮次执行器测试：完成、取消、取代、超时与后端错误。"""

import asyncio

import pytest

from agent_relay.core import chat_runner
from agent_relay.core.chat_runner import ChatTurnRunner
from agent_relay.core.errors import UnknownAgent
from agent_relay.core.segmenter import segment
from agent_relay.core.session_registry import SessionRegistry
from agent_relay.core.turn_logger import TurnLogger
from agent_relay.models.protocol import ChatResult
from agent_relay.worker.runtime import WorkerRuntime
from conftest import ScriptedAdapter


@pytest.fixture
def sessions():
    return SessionRegistry()


def _runner(sessions, agents, adapter, tmp_path=None, **kwargs):
    runtime = WorkerRuntime({"antigravity": adapter})
    turn_logger = TurnLogger(str(tmp_path)) if tmp_path else None
    return ChatTurnRunner(sessions, agents, runtime, turn_logger=turn_logger, **kwargs)


async def test_completed_turn_is_segmented_and_recorded(sessions, agents, tmp_path):
    adapter = ScriptedAdapter(content="word " * 900, cost=0.03)
    runner = _runner(sessions, agents, adapter, tmp_path)
    session = await sessions.start_session("u1", "c1", "general-assistant")

    outcome = await runner.run_turn("u1", "c1", "hello")

    assert outcome.status == "completed"
    assert outcome.session_id == session.id
    assert len(outcome.chunks) == 3
    assert len(outcome.messages) == 3
    assert all(len(m.content) <= 2000 for m in outcome.messages)
    assert session.message_count == 1
    assert session.accumulated_cost == pytest.approx(0.03)

    logs = runner.turn_logger.get_session_logs(session.id)
    assert [log.status for log in logs] == ["completed"]
    assert logs[0].chunk_count == 3
    assert logs[0].prompt == "hello"


async def test_request_carries_session_overrides(sessions, agents):
    adapter = ScriptedAdapter()
    runner = _runner(sessions, agents, adapter)
    await sessions.start_session(
        "u1", "c1", "general-assistant",
        role_override="tester", workspace_override="/srv/app", model_override="gemini-2.5-pro",
    )
    await runner.run_turn("u1", "c1", "run the suite")

    request = adapter.requests[0]
    assert request.agent.model == "gemini-2.5-pro"
    assert request.agent.role_id == "tester"
    assert request.agent.workspace == "/srv/app"
    assert request.message == "run the suite"


async def test_no_active_session(sessions, agents):
    adapter = ScriptedAdapter()
    outcome = await _runner(sessions, agents, adapter).run_turn("u1", "c1", "hi")
    assert outcome.status == "failed"
    assert adapter.requests == []


async def test_unknown_agent_raises(sessions, agents):
    await sessions.start_session("u1", "c1", "ghost-agent")
    with pytest.raises(UnknownAgent):
        await _runner(sessions, agents, ScriptedAdapter()).run_turn("u1", "c1", "hi")


async def test_cancel_discards_output(sessions, agents, tmp_path):
    """取消的轮次什么都不发，也不计入会话。"""
    adapter = ScriptedAdapter(content="late answer", delay=5)
    runner = _runner(sessions, agents, adapter, tmp_path)
    session = await sessions.start_session("u1", "c1", "general-assistant")

    turn = asyncio.create_task(runner.run_turn("u1", "c1", "hi"))
    await adapter.started.wait()
    assert runner.in_flight("u1", "c1")
    assert runner.cancel("u1", "c1")

    outcome = await turn
    assert outcome.status == "cancelled"
    assert outcome.messages == [] and outcome.chunks == []
    assert session.message_count == 0
    assert not runner.in_flight("u1", "c1")
    assert runner.turn_logger.get_session_logs(session.id)[0].status == "cancelled"


async def test_result_after_session_ended_is_dropped(sessions, agents):
    adapter = ScriptedAdapter(content="stale", delay=0.05)
    runner = _runner(sessions, agents, adapter)
    session = await sessions.start_session("u1", "c1", "general-assistant")

    turn = asyncio.create_task(runner.run_turn("u1", "c1", "hi"))
    await adapter.started.wait()
    await sessions.switch_session("u1", "c1", "ag-architect")

    outcome = await turn
    assert outcome.status == "cancelled"
    assert session.message_count == 0


async def test_new_message_supersedes_in_flight_turn(sessions, agents):
    adapter = ScriptedAdapter(content="answer", delay=0.1)
    runner = _runner(sessions, agents, adapter)
    session = await sessions.start_session("u1", "c1", "general-assistant")

    first = asyncio.create_task(runner.run_turn("u1", "c1", "first"))
    await adapter.started.wait()
    second = await runner.run_turn("u1", "c1", "second")

    assert (await first).status == "cancelled"
    assert second.status == "completed"
    assert session.message_count == 1


async def test_timeout_is_failed(sessions, agents):
    adapter = ScriptedAdapter(delay=5)
    runner = _runner(sessions, agents, adapter, timeout_seconds=0.05)
    session = await sessions.start_session("u1", "c1", "general-assistant")

    outcome = await runner.run_turn("u1", "c1", "hi")
    assert outcome.status == "failed"
    assert "0.05s" in outcome.error
    assert session.message_count == 0
    assert not runner.in_flight("u1", "c1")


async def test_backend_exception_is_failed(sessions, agents, tmp_path):
    adapter = ScriptedAdapter(error=RuntimeError("backend down"))
    runner = _runner(sessions, agents, adapter, tmp_path)
    session = await sessions.start_session("u1", "c1", "general-assistant")

    outcome = await runner.run_turn("u1", "c1", "hi")
    assert outcome.status == "failed"
    assert outcome.error == "backend down"
    assert session.message_count == 0
    assert runner.turn_logger.get_session_logs(session.id)[0].error == "backend down"


async def test_error_result_is_failed(sessions, agents):
    class ErrorAdapter(ScriptedAdapter):
        async def chat(self, request):
            return ChatResult(content="quota exceeded", is_error=True)

    runner = _runner(sessions, agents, ErrorAdapter())
    await sessions.start_session("u1", "c1", "general-assistant")
    outcome = await runner.run_turn("u1", "c1", "hi")
    assert outcome.status == "failed"
    assert outcome.error == "quota exceeded"


async def test_missing_adapter_is_failed(sessions, agents):
    runner = _runner(sessions, agents, ScriptedAdapter())
    await sessions.start_session("u1", "c1", "local-coder")
    outcome = await runner.run_turn("u1", "c1", "hi")
    assert outcome.status == "failed"
    assert "ollama" in outcome.error


async def test_cancel_all(sessions, agents):
    adapter = ScriptedAdapter(delay=5)
    runner = _runner(sessions, agents, adapter)
    await sessions.start_session("u1", "c1", "general-assistant")
    await sessions.start_session("u2", "c1", "general-assistant")

    turns = [asyncio.create_task(runner.run_turn(u, "c1", "hi")) for u in ("u1", "u2")]
    while len(adapter.requests) < 2:
        await asyncio.sleep(0.01)
    assert runner.cancel_all() == 2
    assert [o.status for o in await asyncio.gather(*turns)] == ["cancelled", "cancelled"]


async def test_messages_are_built_from_chunks(sessions, agents, monkeypatch):
    """回复只切一次，每条消息对应一个分片。"""
    calls = []

    def counting_segment(text, max_len):
        calls.append(max_len)
        return segment(text, max_len)

    monkeypatch.setattr(chat_runner, "segment", counting_segment)
    runner = _runner(sessions, agents, ScriptedAdapter(content="line\n" * 1000), max_len=500)
    await sessions.start_session("u1", "c1", "general-assistant")

    outcome = await runner.run_turn("u1", "c1", "hello")

    assert calls == [500]
    assert [m.content for m in outcome.messages] == [c.text for c in outcome.chunks]
