"""工作区扫描：在 workspaces_root 下查找 git 仓库，作为向导第二步的候选。

选项列表里当前工作区永远排第一，总数不超过平台下拉菜单的上限。
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# 下拉菜单最多 25 个选项
MAX_WORKSPACE_OPTIONS = 25

_SKIP_DIRS = {"node_modules", "__pycache__", ".venv", "venv", "dist", "build"}


class WorkspaceInfo(BaseModel):
    name: str
    path: str
    is_current: bool = False


class WorkspaceScanner:
    """扫描根目录下的 git 仓库（默认只看一层子目录）。"""

    def __init__(self, root: str = "workspaces", depth: int = 1):
        self.root = Path(root)
        self.depth = depth

    def scan(self) -> list[WorkspaceInfo]:
        """根目录本身若是仓库也算一个；其余按目录名排序。"""
        if not self.root.is_dir():
            logger.warning("[WIZARD] workspace root not found: %s", self.root)
            return []

        repos: list[WorkspaceInfo] = []
        if _is_git_repo(self.root):
            repos.append(WorkspaceInfo(name=self.root.resolve().name, path=str(self.root.resolve())))
        self._scan_dir(self.root, 1, repos)
        logger.debug("[WIZARD] scanned %s: %d repositories", self.root, len(repos))
        return repos

    def _scan_dir(self, directory: Path, level: int, repos: list[WorkspaceInfo]) -> None:
        if level > self.depth:
            return
        try:
            children = sorted(p for p in directory.iterdir() if p.is_dir())
        except OSError as e:
            logger.warning("[WIZARD] cannot list %s: %s", directory, e)
            return
        for child in children:
            if child.name.startswith(".") or child.name in _SKIP_DIRS:
                continue
            if _is_git_repo(child):
                repos.append(WorkspaceInfo(name=child.name, path=str(child.resolve())))
            else:
                self._scan_dir(child, level + 1, repos)

    def options(self, current: str | None = None) -> list[WorkspaceInfo]:
        """向导用的候选列表：当前工作区在首位，其余去重后截断到上限。"""
        current_path = str(Path(current).resolve()) if current else str(self.root.resolve())
        options = [WorkspaceInfo(name="Current Workspace", path=current_path, is_current=True)]
        options.extend(r for r in self.scan() if r.path != current_path)
        return options[:MAX_WORKSPACE_OPTIONS]

    def resolve(self, ref: str) -> str:
        """把向导里的工作区引用还原成路径：绝对路径原样返回，短名在扫描结果里按名字查找。

        根目录本身（"Current Workspace"）的短名就是根目录名，也还原成根目录。
        """
        root = self.root.resolve()
        if not ref or ref == ".":
            return str(root)
        if Path(ref).is_absolute():
            return ref
        for repo in self.scan():
            if repo.name == ref:
                return repo.path
        if ref == root.name:
            return str(root)
        return str((self.root / ref).resolve())


def _is_git_repo(path: Path) -> bool:
    return (path / ".git").exists()
