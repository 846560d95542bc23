"""领域协议定义

缓存层与仓库客户端的接口契约（Protocol）。
本地与共享缓存层实现同一个小接口，流水线与失效服务只依赖抽象。
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from depcache.core.models import CacheKey, Tier


# =========================================================================
# 缓存层协议
# =========================================================================

class CacheTier(Protocol):
    """可读写的缓存层（Local / Shared）

    安装器层只产生新产物，不实现此协议。
    """

    tier: Tier

    def exists(self, key: CacheKey) -> bool:
        """条目是否存在"""
        ...

    def fetch(self, key: CacheKey) -> Path:
        """返回条目归档文件的本地路径，不存在抛 CacheMissError"""
        ...

    def publish(self, key: CacheKey, blob: Path) -> bool:
        """写入条目；已存在视为成功（幂等）。返回是否实际写入"""
        ...

    def remove_one(self, key: CacheKey) -> bool:
        """删除单个条目，返回是否删除了内容"""
        ...

    def remove_all(self, keep: CacheKey | None = None) -> list[str]:
        """删除全部条目（可保留 keep），返回被删除的条目名"""
        ...


# =========================================================================
# 版本库客户端协议
# =========================================================================

class RepositoryClient(Protocol):
    """共享缓存仓库的窄接口

    所有操作在绑定的私有暂存检出目录 workdir 中进行，
    只做元数据检出 + 按文件名的窄更新，不拉取完整历史和内容。
    """

    workdir: Path

    def prepare(self) -> None:
        """元数据检出（不含文件内容），重复调用无副作用"""
        ...

    def list_entries(self) -> set[str]:
        """列出仓库当前的全部条目名"""
        ...

    def update(self, names: list[str]) -> None:
        """把指定文件窄更新到 workdir"""
        ...

    def add_and_commit(self, names: list[str], message: str) -> None:
        """提交 workdir 中的新文件；冲突时抛 ExternalToolError"""
        ...

    def remove_and_commit(self, names: list[str], message: str) -> None:
        """删除指定条目并提交"""
        ...
