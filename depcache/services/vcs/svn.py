"""Subversion 共享仓库客户端

窄检出策略:
  - prepare:  svn checkout URL . --depth empty （只有元数据）
  - list:     svn list URL （服务端列目录，始终是最新版本）
  - update:   svn update <files> （只拉取指定文件）
  - add:      svn add + svn commit -m
  - remove:   svn rm URL/<file>... -m （直接在服务端删除并提交）
"""

from __future__ import annotations

import logging
from pathlib import Path

from depcache.core.exceptions import ExternalToolError
from depcache.utils.shell import CommandExecutor, run_checked

logger = logging.getLogger(__name__)

_SVN = ["svn", "--non-interactive"]


class SvnClient:
    """SVN 仓库客户端"""

    def __init__(
        self, url: str, workdir: Path, executor: CommandExecutor,
        timeout: float | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.workdir = workdir
        self._executor = executor
        self._timeout = timeout

    def _run(self, args: list[str], label: str) -> str:
        r = run_checked(
            self._executor, [*_SVN, *args],
            cwd=str(self.workdir), timeout=self._timeout, label=label,
        )
        return r.stdout

    def prepare(self) -> None:
        if (self.workdir / ".svn").exists():
            return
        self.workdir.mkdir(parents=True, exist_ok=True)
        self._run(["checkout", self.url, ".", "--depth", "empty"], "svn checkout")

    def list_entries(self) -> set[str]:
        self.prepare()
        out = self._run(["list", self.url], "svn list")
        return {
            line.strip() for line in out.splitlines()
            if line.strip() and not line.strip().endswith("/")
        }

    def update(self, names: list[str]) -> None:
        self.prepare()
        self._run(["update", *names], "svn update")
        missing = [n for n in names if not (self.workdir / n).is_file()]
        if missing:
            raise ExternalToolError(f"svn update 未取回文件: {', '.join(missing)}")

    def add_and_commit(self, names: list[str], message: str) -> None:
        self.prepare()
        self._run(["add", *names], "svn add")
        try:
            self._run(["commit", "-m", message, *names], "svn commit")
        except ExternalToolError:
            # 提交被拒绝时撤销 add，工作副本保持干净
            try:
                self._run(["revert", *names], "svn revert")
            except ExternalToolError as e:
                logger.warning("svn revert 失败，工作副本可能残留待提交文件: %s", e)
            raise

    def remove_and_commit(self, names: list[str], message: str) -> None:
        urls = [f"{self.url}/{n}" for n in names]
        self._run(["rm", *urls, "-m", message], "svn rm")
