"""共享缓存仓库客户端

- svn.py: Subversion 实现（--depth empty 窄检出）
- git.py: Git 实现（blob-less 浅克隆 + 按文件 checkout）
"""

from __future__ import annotations

from pathlib import Path

from depcache.core.exceptions import ConfigError
from depcache.core.protocols import RepositoryClient
from depcache.services.vcs.git import GitClient
from depcache.services.vcs.svn import SvnClient
from depcache.utils.shell import CommandExecutor


def make_client(
    backend: str, url: str, workdir: Path, executor: CommandExecutor, *,
    branch: str = "main", timeout: float | None = None,
) -> RepositoryClient:
    """按后端类型构造仓库客户端"""
    if backend == "svn":
        return SvnClient(url, workdir, executor, timeout=timeout)
    if backend == "git":
        return GitClient(url, workdir, executor, branch=branch, timeout=timeout)
    raise ConfigError(f"共享缓存后端不支持: {backend}")


__all__ = ["GitClient", "SvnClient", "make_client"]
