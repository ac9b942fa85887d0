"""工作区扫描测试。"""

import pytest

from agent_relay.workspace.scanner import MAX_WORKSPACE_OPTIONS, WorkspaceScanner


@pytest.fixture
def root(tmp_path):
    for name in ("zeta", "alpha", ".hidden", "node_modules"):
        (tmp_path / name / ".git").mkdir(parents=True)
    (tmp_path / "plain-dir").mkdir()
    (tmp_path / "group" / "nested" / ".git").mkdir(parents=True)
    return tmp_path


def test_scan_finds_repos_sorted(root):
    repos = WorkspaceScanner(str(root)).scan()
    assert [r.name for r in repos] == ["alpha", "zeta"]
    assert repos[0].path == str((root / "alpha").resolve())


def test_scan_depth(root):
    names = [r.name for r in WorkspaceScanner(str(root), depth=2).scan()]
    assert names == ["alpha", "nested", "zeta"]


def test_missing_root(tmp_path):
    assert WorkspaceScanner(str(tmp_path / "missing")).scan() == []


def test_options_current_first(root):
    scanner = WorkspaceScanner(str(root))
    options = scanner.options(current=str(root / "zeta"))
    assert options[0].is_current
    assert options[0].path == str((root / "zeta").resolve())
    assert [o.name for o in options[1:]] == ["alpha"]


def test_options_capped(tmp_path):
    for i in range(40):
        (tmp_path / f"repo{i:02d}" / ".git").mkdir(parents=True)
    assert len(WorkspaceScanner(str(tmp_path)).options()) == MAX_WORKSPACE_OPTIONS


def test_resolve(root):
    scanner = WorkspaceScanner(str(root))
    assert scanner.resolve("/abs/path") == "/abs/path"
    assert scanner.resolve("alpha") == str((root / "alpha").resolve())
    assert scanner.resolve("unknown") == str((root / "unknown").resolve())
    assert scanner.resolve("") == str(root.resolve())
    assert scanner.resolve(".") == str(root.resolve())


def test_resolve_root_short_name(tmp_path):
    """"Current Workspace" 退回短形式时写的是根目录名，应还原成根目录而不是 root/root.name。"""
    root = tmp_path / "myroot"
    (root / "api" / ".git").mkdir(parents=True)
    scanner = WorkspaceScanner(str(root))
    assert scanner.resolve("myroot") == str(root.resolve())
    assert scanner.resolve("api") == str((root / "api").resolve())
