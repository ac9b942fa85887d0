"""会话注册表：维护 (user_id, channel_id) -> 当前 Agent 的活跃索引与全部 Session 记录。

- 活跃索引是「当前在和谁对话」的唯一依据，每个 key 至多一条；
- Session 列表是历史与用量统计，已结束的会话在内存里只保留最近 max_finished 个；
- 同一 key 的所有修改由该 key 的 asyncio.Lock 串行化，不同 key 互不阻塞；
- start / switch / end 会把该 key 下所有未结束的 Session 置为 completed，
  不只是索引当前指向的那个，切换 Agent 不会留下悬空会话。

注册表不校验 agent_id 是否存在，那是调用方（路由层）的职责。
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import TYPE_CHECKING, AsyncIterator

from agent_relay.models.session import ActiveEntry, Session, SessionStatus

if TYPE_CHECKING:
    from agent_relay.storage.session_archive import SessionArchive

logger = logging.getLogger(__name__)

SessionKey = tuple[str, str]

# 这些状态的会话在切换 / 结束时需要收尾
_UNRESOLVED: frozenset[str] = frozenset({"active", "paused"})

DEFAULT_MAX_FINISHED = 1000


class SessionRegistry:
    """会话注册表：活跃索引 + Session 记录，按 key 加锁保证原子更新。"""

    def __init__(
        self,
        archive: SessionArchive | None = None,
        max_finished: int = DEFAULT_MAX_FINISHED,
    ):
        """
        Args:
            archive: 可选；会话创建、结束与每轮对话后写入一份快照
            max_finished: 内存里最多保留多少个已结束的会话，更早的从内存移除（归档里仍在）
        """
        self._sessions: dict[str, Session] = {}
        self._by_key: dict[SessionKey, list[str]] = {}
        self._index: dict[SessionKey, ActiveEntry] = {}
        self._locks: dict[SessionKey, asyncio.Lock] = {}
        self._lock_users: dict[SessionKey, int] = {}
        self._finished: deque[str] = deque()
        self.max_finished = max_finished
        self.archive = archive

    @asynccontextmanager
    async def _locked(self, key: SessionKey) -> AsyncIterator[None]:
        """持有该 key 的锁；最后一个使用者退出时锁随之丢弃，_locks 只含正在用的 key。"""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    # ── 会话生命周期 ──

    async def start_session(
        self,
        user_id: str,
        channel_id: str,
        agent_id: str,
        role_override: str | None = None,
        workspace_override: str | None = None,
        model_override: str | None = None,
        provider_override: str | None = None,
    ) -> Session:
        """新建 active 会话并覆盖该 key 的活跃索引；此前未结束的会话全部置为 completed。"""
        key = (user_id, channel_id)
        async with self._locked(key):
            retired = self._retire_unresolved(key)
            session = Session(
                agent_id=agent_id,
                user_id=user_id,
                channel_id=channel_id,
                role_override=role_override,
                workspace_override=workspace_override,
                model_override=model_override,
                provider_override=provider_override,
            )
            self._sessions[session.id] = session
            self._by_key.setdefault(key, []).append(session.id)
            self._index[key] = ActiveEntry(agent_id=agent_id, session_id=session.id)
            await self._archive(*retired, session)

        logger.info(
            "[SESSION] started: session_id=%s user_id=%s channel_id=%s agent_id=%s "
            "role=%s model=%s provider=%s retired=%d",
            session.id, user_id, channel_id, agent_id,
            role_override, model_override, provider_override, len(retired),
        )
        return session

    async def switch_session(
        self,
        user_id: str,
        channel_id: str,
        agent_id: str,
        role_override: str | None = None,
        workspace_override: str | None = None,
        model_override: str | None = None,
        provider_override: str | None = None,
    ) -> Session:
        """切换 Agent：契约与 start_session 完全相同。"""
        return await self.start_session(
            user_id,
            channel_id,
            agent_id,
            role_override=role_override,
            workspace_override=workspace_override,
            model_override=model_override,
            provider_override=provider_override,
        )

    async def end_session(self, user_id: str, channel_id: str) -> list[Session]:
        """移除活跃索引并把该 key 下所有未结束的会话置为 completed，返回被结束的会话。"""
        key = (user_id, channel_id)
        async with self._locked(key):
            entry = self._index.pop(key, None)
            retired = self._retire_unresolved(key)
            await self._archive(*retired)

        logger.info(
            "[SESSION] ended: user_id=%s channel_id=%s indexed_agent=%s retired=%s",
            user_id, channel_id, entry.agent_id if entry else None, [s.id for s in retired],
        )
        return retired

    async def record_turn(self, session_id: str, cost_delta: float = 0.0) -> Session:
        """记一轮完成的对话：消息数 +1、刷新 last_activity、累加花费。未知 session_id 抛 KeyError。"""
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Session not found: {session_id}")
        async with self._locked((session.user_id, session.channel_id)):
            session.message_count += 1
            session.last_activity = datetime.now()
            session.accumulated_cost += cost_delta
            await self._archive(session)

        logger.debug(
            "[SESSION] turn recorded: session_id=%s message_count=%d cost=%.4f",
            session_id, session.message_count, session.accumulated_cost,
        )
        return session

    async def set_status(self, session_id: str, status: SessionStatus) -> Session:
        """暂停 / 恢复 / 标记错误；置为 completed 时同时移除指向它的活跃索引。"""
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Session not found: {session_id}")
        key = (session.user_id, session.channel_id)
        async with self._locked(key):
            was_unresolved = session.status in _UNRESOLVED
            session.status = status
            session.last_activity = datetime.now()
            if status in ("completed", "error"):
                session.end_time = session.last_activity
                entry = self._index.get(key)
                if entry and entry.session_id == session_id:
                    del self._index[key]
                if was_unresolved:
                    self._finished.append(session_id)
                    self._evict_finished()
            await self._archive(session)
        logger.info("[SESSION] status changed: session_id=%s status=%s", session_id, status)
        return session

    # ── 查询 ──

    def get_active_session(self, user_id: str, channel_id: str) -> Session | None:
        """经活跃索引查找当前会话（只读）；没有或已结束返回 None。"""
        entry = self._index.get((user_id, channel_id))
        if entry is None:
            return None
        session = self._sessions.get(entry.session_id)
        if session is None or session.status not in _UNRESOLVED:
            return None
        return session

    def get_active_entry(self, user_id: str, channel_id: str) -> ActiveEntry | None:
        return self._index.get((user_id, channel_id))

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def list_sessions(
        self,
        user_id: str | None = None,
        channel_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[Session]:
        """按条件过滤会话，按开始时间倒序。"""
        sessions = [
            s for s in self._sessions.values()
            if (user_id is None or s.user_id == user_id)
            and (channel_id is None or s.channel_id == channel_id)
            and (status is None or s.status == status)
        ]
        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions

    def active_keys(self) -> list[SessionKey]:
        return list(self._index.keys())

    def stats(self) -> dict:
        """会话总数、活跃数、累计消息数与累计花费。"""
        sessions = list(self._sessions.values())
        return {
            "total_sessions": len(sessions),
            "active_sessions": len(self._index),
            "total_messages": sum(s.message_count for s in sessions),
            "total_cost": round(sum(s.accumulated_cost for s in sessions), 6),
        }

    # ── 内部 ──

    def _retire_unresolved(self, key: SessionKey) -> list[Session]:
        """调用方须持有该 key 的锁。"""
        now = datetime.now()
        retired = []
        for session_id in self._by_key.get(key, []):
            session = self._sessions[session_id]
            if session.status in _UNRESOLVED:
                session.status = "completed"
                session.end_time = now
                retired.append(session)
        for session in retired:
            self._finished.append(session.id)
        self._evict_finished()
        return retired

    def _evict_finished(self) -> None:
        """已结束的会话超过上限时，按结束先后从内存移除最早的那些。"""
        while len(self._finished) > self.max_finished:
            session_id = self._finished.popleft()
            session = self._sessions.get(session_id)
            # 结束后又被恢复的会话不移除
            if session is None or session.status in _UNRESOLVED:
                continue
            del self._sessions[session_id]
            key = (session.user_id, session.channel_id)
            ids = self._by_key[key]
            ids.remove(session_id)
            if not ids:
                del self._by_key[key]
            logger.debug("[SESSION] evicted finished session from memory: session_id=%s", session_id)

    async def _archive(self, *sessions: Session) -> None:
        if not self.archive or not sessions:
            return
        for session in sessions:
            try:
                await self.archive.save(session)
            except Exception as e:
                # 归档只是统计副本，失败不影响内存中的路由状态
                logger.error("[SESSION] archive failed: session_id=%s error=%s", session.id, e)
