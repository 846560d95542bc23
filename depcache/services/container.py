"""服务容器 — 由一份 Config 装配全部组件

依赖关系图（→ 表示依赖）:
  pipeline     → local, shared, installer, archiver
  invalidation → local, shared
  shared       → 仓库客户端（svn / git）→ executor

Config 与命令执行器通过构造函数显式注入，不依赖任何全局状态。

用法:
    cfg = Config.from_file("depcache.yml")
    container = ServiceContainer(cfg)
    result = container.pipeline(cfg.manifest()).run()
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from depcache.utils.shell import CommandExecutor, LocalExecutor

if TYPE_CHECKING:
    from depcache.core.archiver import ArtifactArchiver
    from depcache.core.config import Config
    from depcache.core.invalidation import InvalidationService
    from depcache.core.models import DependencyManifest
    from depcache.core.pipeline import ResolutionPipeline
    from depcache.core.protocols import RepositoryClient
    from depcache.services.cache.local import LocalCacheStore
    from depcache.services.cache.shared import SharedCacheStore
    from depcache.services.installer import PackageInstaller

logger = logging.getLogger(__name__)


class ServiceContainer:
    """懒加载服务容器 — 同一容器内的实例共享"""

    def __init__(self, config: Config, executor: CommandExecutor | None = None) -> None:
        self._config = config
        self._executor = executor or LocalExecutor()
        self._instances: dict[str, object] = {}

    @property
    def config(self) -> Config:
        return self._config

    @property
    def executor(self) -> CommandExecutor:
        return self._executor

    @property
    def work_dir(self) -> Path:
        return Path(self._config.work_dir).resolve()

    @property
    def local(self) -> LocalCacheStore:
        if "local" not in self._instances:
            from depcache.services.cache.local import LocalCacheStore
            self._instances["local"] = LocalCacheStore(self._config.local_storage_path)
        return self._instances["local"]  # type: ignore[return-value]

    @property
    def shared(self) -> SharedCacheStore | None:
        """共享缓存层；配置禁用时为 None"""
        if not self._config.shared_enabled:
            return None
        if "shared" not in self._instances:
            from depcache.services.cache.shared import SharedCacheStore
            self._instances["shared"] = SharedCacheStore(
                self._make_client, staging_root=self._config.staging_root or None,
            )
        return self._instances["shared"]  # type: ignore[return-value]

    def _make_client(self, workdir: Path) -> RepositoryClient:
        from depcache.services.vcs import make_client
        cfg = self._config
        return make_client(
            cfg.shared_backend, cfg.shared_url, workdir, self._executor,
            branch=cfg.shared_branch, timeout=cfg.shared_timeout,
        )

    @property
    def archiver(self) -> ArtifactArchiver:
        if "archiver" not in self._instances:
            from depcache.core.archiver import ArtifactArchiver
            self._instances["archiver"] = ArtifactArchiver(
                self.work_dir, staging_root=self._config.staging_root or None,
            )
        return self._instances["archiver"]  # type: ignore[return-value]

    @property
    def installer(self) -> PackageInstaller:
        if "installer" not in self._instances:
            from depcache.services.installer import PackageInstaller
            self._instances["installer"] = PackageInstaller(
                self.work_dir, self._executor,
                installer=self._config.installer,
                timeout=self._config.install_timeout,
            )
        return self._instances["installer"]  # type: ignore[return-value]

    @property
    def invalidation(self) -> InvalidationService:
        if "invalidation" not in self._instances:
            from depcache.core.invalidation import InvalidationService
            self._instances["invalidation"] = InvalidationService(self.local, self.shared)
        return self._instances["invalidation"]  # type: ignore[return-value]

    def pipeline(self, manifest: DependencyManifest) -> ResolutionPipeline:
        from depcache.core.pipeline import ResolutionPipeline
        return ResolutionPipeline(
            manifest,
            local=self.local,
            shared=self.shared,
            installer=self.installer,
            archiver=self.archiver,
            staging_root=self._config.staging_root or None,
        )
