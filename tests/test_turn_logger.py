"""轮次日志测试。"""

from agent_relay.core.turn_logger import TurnLog, TurnLogger


def test_save_and_read_newest_first(tmp_path):
    turn_logger = TurnLogger(str(tmp_path / "logs"))
    turn_logger.save(TurnLog(session_id="s1", turn_id="t1", status="completed", cost_usd=0.01))
    turn_logger.save(TurnLog(session_id="s1", turn_id="t2", status="failed", error="timeout"))
    turn_logger.save(TurnLog(session_id="s2", turn_id="t3"))

    logs = turn_logger.get_session_logs("s1")
    assert [log.turn_id for log in logs] == ["t2", "t1"]
    assert (tmp_path / "logs" / "turns_s1.jsonl").exists()


def test_bad_lines_are_skipped(tmp_path):
    turn_logger = TurnLogger(str(tmp_path))
    turn_logger.save(TurnLog(session_id="s1", turn_id="t1"))
    with open(tmp_path / "turns_s1.jsonl", "a", encoding="utf-8") as f:
        f.write("{not json\n\n")
    turn_logger.save(TurnLog(session_id="s1", turn_id="t2"))

    assert [log.turn_id for log in turn_logger.get_session_logs("s1")] == ["t2", "t1"]


def test_unknown_session(tmp_path):
    assert TurnLogger(str(tmp_path)).get_session_logs("missing") == []


def test_session_summary(tmp_path):
    turn_logger = TurnLogger(str(tmp_path))
    turn_logger.save(TurnLog(session_id="s1", turn_id="t1", cost_usd=0.25))
    turn_logger.save(TurnLog(session_id="s1", turn_id="t2", cost_usd=0.5))
    turn_logger.save(TurnLog(session_id="s1", turn_id="t3", status="cancelled"))

    summary = turn_logger.session_summary("s1")
    assert summary["turns"] == 3
    assert summary["by_status"] == {"completed": 2, "cancelled": 1}
    assert summary["total_cost_usd"] == 0.75
    assert summary["last_turn"]["turn_id"] == "t3"
