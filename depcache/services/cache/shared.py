"""共享缓存层 — 版本库中的跨机器缓存

所有操作都通过绑定到本层的私有暂存检出目录进行，目录在首次使用时创建，
close() 时删除。

幂等发布规则:
  1. 先 list 检查条目，已存在直接视为成功
  2. 不存在则 add + commit
  3. 提交失败时重新 list：条目已存在说明其他构建机抢先提交，同样视为成功；
     否则抛 PublishError

批量删除总是基于仓库当前的真实内容枚举，每次变更都带审计信息提交。
"""

from __future__ import annotations

import logging
import shutil
import socket
import tempfile
from collections.abc import Callable
from pathlib import Path

from depcache.core.exceptions import CacheMissError, ExternalToolError, PublishError
from depcache.core.models import CacheKey, Tier
from depcache.core.protocols import RepositoryClient
from depcache.utils.fs import remove_tree

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Path], RepositoryClient]


class SharedCacheStore:
    """共享缓存仓库"""

    tier = Tier.SHARED

    def __init__(self, client_factory: ClientFactory, staging_root: str | Path | None = None) -> None:
        self._client_factory = client_factory
        self._staging_root = staging_root or None
        self._client: RepositoryClient | None = None
        self._workdir: Path | None = None

    # ------------------------------------------------------------------
    # 暂存检出目录生命周期
    # ------------------------------------------------------------------

    @property
    def client(self) -> RepositoryClient:
        if self._client is None:
            if self._staging_root:
                Path(self._staging_root).mkdir(parents=True, exist_ok=True)
            self._workdir = Path(tempfile.mkdtemp(
                prefix="depcache-shared-",
                dir=str(self._staging_root) if self._staging_root else None,
            ))
            logger.debug("共享缓存暂存目录: %s", self._workdir)
            self._client = self._client_factory(self._workdir)
        return self._client

    @property
    def staging_path(self) -> Path | None:
        return self._workdir

    def close(self) -> None:
        """删除暂存检出目录"""
        if self._workdir is not None:
            remove_tree(self._workdir)
        self._client = None
        self._workdir = None

    def __enter__(self) -> SharedCacheStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # 缓存层接口
    # ------------------------------------------------------------------

    def list_entries(self) -> set[str]:
        """元数据检出后列出仓库中的全部条目"""
        entries = self.client.list_entries()
        logger.debug("共享缓存现有 %d 个条目", len(entries))
        return entries

    def exists(self, key: CacheKey) -> bool:
        return key.filename in self.list_entries()

    def fetch(self, key: CacheKey) -> Path:
        name = key.filename
        if name not in self.list_entries():
            raise CacheMissError(f"共享缓存未命中: {name}")
        logger.info("共享缓存命中，窄更新: %s", name)
        self.client.update([name])
        return self.client.workdir / name

    def publish(self, key: CacheKey, blob: Path) -> bool:
        name = key.filename
        if name in self.list_entries():
            logger.info("共享缓存已存在，跳过提交: %s", name)
            return False

        dest = self.client.workdir / name
        shutil.copyfile(blob, dest)
        try:
            self.client.add_and_commit([name], _audit(f"add cache {name}"))
        except ExternalToolError as e:
            if name in self.list_entries():
                logger.info("提交冲突，条目已由其他构建机提交: %s", name)
                return False
            raise PublishError(f"写入共享缓存失败 {name}: {e}") from e
        finally:
            dest.unlink(missing_ok=True)
        logger.info("已提交到共享缓存: %s", name)
        return True

    def remove_one(self, key: CacheKey) -> bool:
        name = key.filename
        if name not in self.list_entries():
            logger.info("共享缓存中不存在，无需删除: %s", name)
            return False
        self.client.remove_and_commit([name], _audit(f"remove cache {name}"))
        logger.info("已从共享缓存删除: %s", name)
        return True

    def remove_all(self, keep: CacheKey | None = None) -> list[str]:
        keep_name = keep.filename if keep else ""
        targets = sorted(n for n in self.list_entries() if n != keep_name)
        if not targets:
            logger.info("共享缓存已为空，无需删除")
            return []
        suffix = f" except {keep_name}" if keep_name else ""
        self.client.remove_and_commit(
            targets, _audit(f"remove {len(targets)} cache entries{suffix}"),
        )
        logger.info("已从共享缓存删除 %d 个条目%s", len(targets), suffix)
        return targets


def _audit(action: str) -> str:
    """提交信息：动作 + 来源主机"""
    return f"depcache: {action} (host={socket.gethostname()})"
