"""会话归档：把 Session 快照写入 SQLite，供统计与事后查询。

内存中的 SessionRegistry 才是路由的唯一依据；归档只是副本，重启后不会用它恢复活跃索引。
使用 aiosqlite 异步读写，表结构由 DB_SCHEMA 定义。
"""

from __future__ import annotations

import logging

import aiosqlite

from agent_relay.models.session import Session

logger = logging.getLogger(__name__)

DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    start_time TEXT NOT NULL,
    last_activity TEXT NOT NULL,
    end_time TEXT,
    message_count INTEGER NOT NULL DEFAULT 0,
    accumulated_cost REAL NOT NULL DEFAULT 0,
    model_override TEXT,
    provider_override TEXT,
    role_override TEXT,
    workspace_override TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_user_channel ON sessions(user_id, channel_id);
CREATE INDEX IF NOT EXISTS idx_sessions_start_time ON sessions(start_time);
"""

_COLUMNS = (
    "id", "agent_id", "user_id", "channel_id", "status", "start_time", "last_activity",
    "end_time", "message_count", "accumulated_cost", "model_override", "provider_override",
    "role_override", "workspace_override",
)


class SessionArchive:
    """Session 快照表：按 id upsert，按用户 / 频道 / 状态查询。"""

    def __init__(self, db_path: str = "data/agent_relay.db"):
        """指定 SQLite 数据库文件路径，连接在 initialize() 中建立。"""
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """连接数据库、设置 Row 工厂并建表。应用启动时调用一次。"""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(DB_SCHEMA)
        await self._db.commit()
        logger.info("[SESSION] archive ready: %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def save(self, session: Session) -> None:
        """写入或覆盖一条会话快照。"""
        data = session.model_dump(mode="json")
        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(f"{col} = excluded.{col}" for col in _COLUMNS if col != "id")
        await self._db.execute(
            f"INSERT INTO sessions ({', '.join(_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}",
            tuple(data.get(col) for col in _COLUMNS),
        )
        await self._db.commit()

    async def get(self, session_id: str) -> Session | None:
        cursor = await self._db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def list_sessions(
        self,
        user_id: str | None = None,
        channel_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
    ) -> list[Session]:
        """按条件过滤，按开始时间倒序。"""
        clauses = []
        params: list = []
        for col, value in (("user_id", user_id), ("channel_id", channel_id), ("status", status)):
            if value is not None:
                clauses.append(f"{col} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        cursor = await self._db.execute(
            f"SELECT * FROM sessions {where} ORDER BY start_time DESC LIMIT ?", tuple(params)
        )
        rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    async def totals(self) -> dict:
        """历史累计：会话数、消息数、花费。"""
        cursor = await self._db.execute(
            "SELECT COUNT(*) AS sessions, COALESCE(SUM(message_count), 0) AS messages, "
            "COALESCE(SUM(accumulated_cost), 0) AS cost FROM sessions"
        )
        row = await cursor.fetchone()
        return {"sessions": row["sessions"], "messages": row["messages"], "cost": row["cost"]}

    def _row_to_session(self, row: aiosqlite.Row) -> Session:
        return Session.model_validate({col: row[col] for col in _COLUMNS})
