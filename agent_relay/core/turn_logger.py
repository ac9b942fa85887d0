"""对话轮次日志：每个会话一份 JSONL 文件，记录每轮对话的输入、输出、耗时、花费与结果状态。

文件位于 {log_dir}/turns_{session_id}.jsonl，每行一条记录，便于追加和逐行读取。
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class TurnLog(BaseModel):
    """一轮对话的完整记录。"""
    session_id: str = ""
    turn_id: str = ""
    user_id: str = ""
    channel_id: str = ""
    agent_id: str = ""
    model: str = ""
    provider: str = ""
    status: str = "completed"    # completed / failed / cancelled
    prompt: str = ""
    response: str = ""           # 完整响应，不截断
    error: str = ""
    chunk_count: int = 0
    duration_ms: int = 0
    cost_usd: float = 0.0
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


class TurnLogger:
    """按会话写入 / 读取轮次日志（JSONL 格式）。"""

    def __init__(self, log_dir: str = "data/logs"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _session_file(self, session_id: str) -> Path:
        return self.log_dir / f"turns_{session_id}.jsonl"

    def save(self, log: TurnLog) -> None:
        """追加一条记录到该会话文件。"""
        path = self._session_file(log.session_id)
        with open(path, "a", encoding="utf-8") as f:
            f.write(log.model_dump_json() + "\n")
        logger.debug(
            "[TURN] logged: session=%s turn=%s status=%s duration=%dms",
            log.session_id, log.turn_id, log.status, log.duration_ms,
        )

    def get_session_logs(self, session_id: str) -> list[TurnLog]:
        """读取该会话全部记录，最新的在最前。损坏的行跳过并记警告。"""
        path = self._session_file(session_id)
        if not path.exists():
            return []
        logs: list[TurnLog] = []
        with open(path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    logs.append(TurnLog.model_validate_json(line))
                except ValidationError as e:
                    logger.warning("[TURN] skipping bad line %d in %s: %s", lineno, path, e)
        return list(reversed(logs))

    def session_summary(self, session_id: str) -> dict:
        """该会话各状态的轮次数与总花费。"""
        logs = self.get_session_logs(session_id)
        counts: dict[str, int] = {}
        for log in logs:
            counts[log.status] = counts.get(log.status, 0) + 1
        return {
            "session_id": session_id,
            "turns": len(logs),
            "by_status": counts,
            "total_cost_usd": round(sum(log.cost_usd for log in logs), 6),
            "last_turn": logs[0].model_dump() if logs else None,
        }
