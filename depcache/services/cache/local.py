"""本地磁盘缓存层

单目录存储，每个条目是一个以 CacheKey.filename 命名的归档文件。
publish 先写同目录临时文件再原子 rename，并发 fetch 不会读到半个文件。

条目旁可附带 <entry>.shared 标记文件，表示已确认共享仓库持有同一条目，
本地命中时据此跳过向共享层的回写。
"""

from __future__ import annotations

import logging
from pathlib import Path

from depcache.core.exceptions import CacheMissError
from depcache.core.models import CacheKey, Tier
from depcache.utils.fs import atomic_copy

logger = logging.getLogger(__name__)

SHARED_MARKER_SUFFIX = ".shared"


class LocalCacheStore:
    """本地缓存目录"""

    tier = Tier.LOCAL

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        if not self.root.exists():
            logger.info("创建本地缓存目录: %s", self.root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: CacheKey) -> Path:
        return self.root / key.filename

    def exists(self, key: CacheKey) -> bool:
        return self.path_for(key).is_file()

    def fetch(self, key: CacheKey) -> Path:
        path = self.path_for(key)
        if not path.is_file():
            raise CacheMissError(f"本地缓存未命中: {key.filename}")
        logger.info("本地缓存命中: %s", path)
        return path

    def publish(self, key: CacheKey, blob: Path) -> bool:
        dest = self.path_for(key)
        if dest.is_file():
            logger.info("本地缓存已存在，跳过写入: %s", dest.name)
            return False
        atomic_copy(blob, dest)
        logger.info("已写入本地缓存: %s", dest)
        return True

    def list_entries(self) -> list[str]:
        return sorted(
            p.name for p in self.root.iterdir()
            if p.is_file()
            and not p.name.startswith(".")
            and not p.name.endswith(SHARED_MARKER_SUFFIX)
        )

    def remove_one(self, key: CacheKey) -> bool:
        path = self.path_for(key)
        self._marker(key.filename).unlink(missing_ok=True)
        if not path.exists():
            logger.info("本地缓存不存在，无需删除: %s", path.name)
            return False
        path.unlink()
        logger.info("已删除本地缓存: %s", path)
        return True

    def remove_all(self, keep: CacheKey | None = None) -> list[str]:
        keep_name = keep.filename if keep else ""
        removed: list[str] = []
        for name in self.list_entries():
            if name == keep_name:
                continue
            (self.root / name).unlink(missing_ok=True)
            self._marker(name).unlink(missing_ok=True)
            removed.append(name)
        # 失去条目的孤立标记一并清理
        for marker in self.root.glob(f"*{SHARED_MARKER_SUFFIX}"):
            if marker.name.removesuffix(SHARED_MARKER_SUFFIX) != keep_name:
                marker.unlink(missing_ok=True)
        logger.info("已清理本地缓存 %d 个条目%s", len(removed),
                    f"（保留 {keep_name}）" if keep_name else "")
        return removed

    # ------------------------------------------------------------------
    # 共享层同步标记
    # ------------------------------------------------------------------

    def _marker(self, name: str) -> Path:
        return self.root / f"{name}{SHARED_MARKER_SUFFIX}"

    def is_shared_synced(self, key: CacheKey) -> bool:
        return self._marker(key.filename).is_file()

    def mark_shared_synced(self, key: CacheKey) -> None:
        if self.exists(key):
            self._marker(key.filename).touch()

    def clear_shared_marks(self, names: list[str] | None = None) -> None:
        """清除同步标记；names 为 None 时清除全部"""
        if names is None:
            for marker in self.root.glob(f"*{SHARED_MARKER_SUFFIX}"):
                marker.unlink(missing_ok=True)
            return
        for name in names:
            self._marker(name).unlink(missing_ok=True)
