"""Git 共享仓库客户端

与 SVN 客户端对应的窄检出实现:
  - prepare:  git clone --filter=blob:none --no-checkout --depth 1 （不下载任何文件内容）
  - list:     git fetch 最新提交 + git ls-tree --name-only
  - update:   git checkout HEAD -- <files> （按需拉取指定 blob）
  - add:      git add + commit + push
  - remove:   git rm --cached + commit + push

push 被拒（其他构建机抢先提交）时抛 ExternalToolError，
下一次 list 会重新对齐到远端最新提交。共享仓库需至少有一个初始提交。
"""

from __future__ import annotations

import logging
from pathlib import Path

from depcache.core.exceptions import ExternalToolError
from depcache.utils.shell import CommandExecutor, run_checked

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = ("depcache", "depcache@localhost")


class GitClient:
    """Git 仓库客户端"""

    def __init__(
        self, url: str, workdir: Path, executor: CommandExecutor,
        branch: str = "main", timeout: float | None = None,
        author: tuple[str, str] = DEFAULT_AUTHOR,
    ) -> None:
        self.url = url
        self.branch = branch
        self.workdir = workdir
        self._executor = executor
        self._timeout = timeout
        self._author = author

    def _git(self, args: list[str], label: str) -> str:
        r = run_checked(
            self._executor, ["git", *args],
            cwd=str(self.workdir), timeout=self._timeout, label=label,
        )
        return r.stdout

    def prepare(self) -> None:
        if (self.workdir / ".git").exists():
            return
        self.workdir.mkdir(parents=True, exist_ok=True)
        self._git([
            "clone", "--filter=blob:none", "--no-checkout", "--depth", "1",
            "--branch", self.branch, self.url, ".",
        ], "git clone")

    def _sync(self) -> None:
        """对齐到远端分支最新提交（只更新索引，不写工作区）"""
        self._git([
            "fetch", "--filter=blob:none", "--depth", "1", "origin", self.branch,
        ], "git fetch")
        self._git(["reset", "--quiet", "--mixed", "FETCH_HEAD"], "git reset")

    def list_entries(self) -> set[str]:
        self.prepare()
        self._sync()
        out = self._git(["ls-tree", "--name-only", "HEAD"], "git ls-tree")
        return {line.strip() for line in out.splitlines() if line.strip()}

    def update(self, names: list[str]) -> None:
        self.prepare()
        self._git(["checkout", "HEAD", "--", *names], "git checkout")
        missing = [n for n in names if not (self.workdir / n).is_file()]
        if missing:
            raise ExternalToolError(f"git checkout 未取回文件: {', '.join(missing)}")

    def _commit_and_push(self, message: str) -> None:
        name, email = self._author
        self._git([
            "-c", f"user.name={name}", "-c", f"user.email={email}",
            "commit", "--quiet", "-m", message,
        ], "git commit")
        self._git(["push", "origin", f"HEAD:{self.branch}"], "git push")

    def add_and_commit(self, names: list[str], message: str) -> None:
        self.prepare()
        self._sync()
        self._git(["add", "--", *names], "git add")
        self._commit_and_push(message)

    def remove_and_commit(self, names: list[str], message: str) -> None:
        self.prepare()
        self._sync()
        self._git(["rm", "--cached", "--quiet", "--", *names], "git rm")
        self._commit_and_push(message)
