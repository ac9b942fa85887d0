"""SessionRegistry 单元测试。"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from agent_relay.core.session_registry import SessionRegistry
from agent_relay.models.session import ActiveEntry
from agent_relay.storage.session_archive import SessionArchive


@pytest.fixture
def registry():
    return SessionRegistry()


async def test_start_session_sets_index(registry):
    session = await registry.start_session("u1", "c1", "ag-coder", model_override="deepseek-r1:7b")
    assert session.status == "active"
    assert session.id.startswith("session-")
    assert registry.get_active_entry("u1", "c1") == ActiveEntry("ag-coder", session.id)
    assert registry.get_active_session("u1", "c1") is session


async def test_session_ids_are_unique(registry):
    ids = {(await registry.start_session("u", f"c{i}", "a")).id for i in range(50)}
    assert len(ids) == 50


async def test_switch_retires_every_unresolved_session(registry):
    """切换时该 key 下所有未结束的会话都被收尾，不只是当前指向的那个。"""
    first = await registry.start_session("u1", "c1", "ag-coder")
    second = await registry.switch_session("u1", "c1", "ag-architect")
    await registry.set_status(second.id, "paused")
    third = await registry.switch_session("u1", "c1", "general-assistant")

    assert first.status == "completed" and first.end_time is not None
    assert second.status == "completed"
    assert third.status == "active"
    assert registry.list_sessions(user_id="u1", status="active") == [third]


async def test_end_session_retires_all(registry):
    a = await registry.start_session("u1", "c1", "ag-coder")
    b = await registry.start_session("u1", "c1", "ag-tester")
    retired = await registry.end_session("u1", "c1")

    assert registry.get_active_session("u1", "c1") is None
    assert registry.get_active_entry("u1", "c1") is None
    # a 在 b 启动时已经结束，这里只剩 b
    assert retired == [b]
    assert a.status == "completed" and b.status == "completed"


async def test_end_without_session(registry):
    assert await registry.end_session("nobody", "nowhere") == []


async def test_keys_are_independent(registry):
    a = await registry.start_session("u1", "c1", "ag-coder")
    b = await registry.start_session("u1", "c2", "ag-tester")
    c = await registry.start_session("u2", "c1", "cursor-coder")
    await registry.end_session("u1", "c1")

    assert a.status == "completed"
    assert registry.get_active_session("u1", "c2") is b
    assert registry.get_active_session("u2", "c1") is c
    assert sorted(registry.active_keys()) == [("u1", "c2"), ("u2", "c1")]


async def test_concurrent_switches_leave_consistent_index(registry):
    """同一 key 的并发切换：索引最终指向其中一个 Agent，且与其活跃会话一致。"""
    await registry.start_session("u1", "c1", "general-assistant")
    results = await asyncio.gather(
        registry.switch_session("u1", "c1", "ag-coder"),
        registry.switch_session("u1", "c1", "ag-architect"),
    )

    entry = registry.get_active_entry("u1", "c1")
    assert entry.agent_id in {"ag-coder", "ag-architect"}
    winner = registry.get_session(entry.session_id)
    assert winner.agent_id == entry.agent_id
    assert winner in results
    assert len(registry.list_sessions(user_id="u1", channel_id="c1", status="active")) == 1


async def test_many_concurrent_operations(registry):
    agents = [f"agent-{i}" for i in range(20)]
    await asyncio.gather(*(registry.switch_session("u", "c", a) for a in agents))
    active = registry.list_sessions(user_id="u", channel_id="c", status="active")
    assert len(active) == 1
    assert registry.get_active_entry("u", "c").session_id == active[0].id


async def test_record_turn(registry):
    session = await registry.start_session("u1", "c1", "ag-coder")
    before = session.last_activity
    await registry.record_turn(session.id, cost_delta=0.02)
    await registry.record_turn(session.id)

    assert session.message_count == 2
    assert session.accumulated_cost == pytest.approx(0.02)
    assert session.last_activity >= before


async def test_record_turn_unknown_session(registry):
    with pytest.raises(KeyError):
        await registry.record_turn("session-0-missing")


async def test_overrides_stay_on_session(registry):
    session = await registry.start_session(
        "u1", "c1", "general-assistant",
        role_override="tester", workspace_override="/srv/x",
        model_override="gpt-4o", provider_override="openai",
    )
    assert (session.role_override, session.workspace_override) == ("tester", "/srv/x")
    assert (session.model_override, session.provider_override) == ("gpt-4o", "openai")


async def test_set_status_completed_clears_index(registry):
    session = await registry.start_session("u1", "c1", "ag-coder")
    await registry.set_status(session.id, "error")
    assert registry.get_active_entry("u1", "c1") is None
    assert session.end_time is not None


async def test_paused_session_is_still_routed(registry):
    session = await registry.start_session("u1", "c1", "ag-coder")
    await registry.set_status(session.id, "paused")
    assert registry.get_active_session("u1", "c1") is session


async def test_stats(registry):
    s = await registry.start_session("u1", "c1", "ag-coder")
    await registry.record_turn(s.id, 0.5)
    await registry.start_session("u2", "c1", "ag-coder")
    stats = registry.stats()
    assert stats["total_sessions"] == 2
    assert stats["active_sessions"] == 2
    assert stats["total_messages"] == 1
    assert stats["total_cost"] == pytest.approx(0.5)


async def test_archive_receives_snapshots(tmp_path):
    archive = SessionArchive(db_path=str(tmp_path / "sessions.db"))
    await archive.initialize()
    registry = SessionRegistry(archive=archive)
    try:
        first = await registry.start_session("u1", "c1", "ag-coder")
        await registry.record_turn(first.id, 0.1)
        await registry.switch_session("u1", "c1", "ag-tester")

        stored = await archive.get(first.id)
        assert stored.status == "completed"
        assert stored.message_count == 1
        assert len(await archive.list_sessions(user_id="u1")) == 2
    finally:
        await archive.close()


async def test_archive_failure_does_not_break_routing():
    archive = AsyncMock()
    archive.save.side_effect = OSError("disk full")

    registry = SessionRegistry(archive=archive)
    first = await registry.start_session("u1", "c1", "ag-coder")
    second = await registry.switch_session("u1", "c1", "ag-tester")

    assert registry.get_active_session("u1", "c1") is second
    assert first.status == "completed"
    # 切换时写了被结束的旧会话和新会话两份快照
    assert archive.save.await_count == 3


async def test_locks_are_dropped_when_unused(registry):
    """锁只在有人使用时存在，结束过的 key 不会永久留一把锁。"""
    await registry.start_session("u1", "c1", "ag-coder")
    await registry.end_session("u1", "c1")
    await asyncio.gather(*(registry.switch_session("u2", f"c{i}", "ag-coder") for i in range(10)))
    await asyncio.gather(*(registry.end_session("u2", f"c{i}") for i in range(10)))

    assert registry._locks == {}
    assert registry._lock_users == {}


async def test_finished_sessions_are_capped():
    registry = SessionRegistry(max_finished=3)
    sessions = []
    for i in range(6):
        sessions.append(await registry.start_session("u1", f"c{i}", "ag-coder"))
        await registry.end_session("u1", f"c{i}")
    current = await registry.start_session("u1", "c9", "ag-coder")

    remaining = registry.list_sessions()
    assert {s.id for s in remaining} == {current.id} | {s.id for s in sessions[3:]}
    assert registry.get_session(sessions[0].id) is None
    assert ("u1", "c0") not in registry._by_key
    assert registry.get_active_session("u1", "c9") is current


async def test_cap_never_evicts_unresolved_sessions():
    registry = SessionRegistry(max_finished=1)
    paused = await registry.start_session("u1", "c1", "ag-coder")
    await registry.set_status(paused.id, "paused")
    for i in range(3):
        await registry.start_session("u2", f"c{i}", "ag-tester")
        await registry.end_session("u2", f"c{i}")

    assert registry.get_active_session("u1", "c1") is paused
    assert len(registry.list_sessions(user_id="u2")) == 1
