"""依赖解析流水线（状态机）

    START → TRY_LOCAL → TRY_SHARED → INSTALL → PUBLISH → POSTINSTALL → DONE
                                         ↘ FAIL

- TRY_LOCAL:   命中则解包；共享层未确认持有该条目时进入 PUBLISH 回写共享层，
               否则直接 POSTINSTALL。未命中 / 解包失败进入 TRY_SHARED，不重试
- TRY_SHARED:  命中则窄更新 + 解包，回写本地后直接 POSTINSTALL；失败进入 INSTALL
- INSTALL:     调用外部安装器（有时限），失败或超时 → FAIL；成功则打包进入 PUBLISH
- PUBLISH:     尽力写入各缓存层，失败只记录日志
- POSTINSTALL: 执行钩子，失败只记录日志，不回滚已完成的加载

各层严格按顺序尝试，每一步完成后才开始下一步。
清理（暂存目录、生成的安装清单、共享层检出目录）在任何终止路径上都会执行，
包括 KeyboardInterrupt / SystemExit。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from depcache.core.exceptions import (
    ArchiveError,
    CacheMissError,
    DepCacheError,
    DependenciesLoadingError,
    ExternalToolError,
    InstallTimeoutError,
)
from depcache.core.fingerprint import derive_key
from depcache.core.manifest import postinstall_hooks
from depcache.core.models import (
    CacheKey,
    DependencyManifest,
    ResolutionResult,
    Stage,
    Tier,
)
from depcache.utils.fs import staging_dir

if TYPE_CHECKING:
    from depcache.core.archiver import ArtifactArchiver
    from depcache.core.protocols import CacheTier
    from depcache.services.cache.local import LocalCacheStore
    from depcache.services.cache.shared import SharedCacheStore
    from depcache.services.installer import PackageInstaller

logger = logging.getLogger(__name__)


@dataclass
class _RunContext:
    """单次运行的可变状态"""

    key: CacheKey
    result: ResolutionResult
    staging: Path
    blob: Path | None = None
    publish_targets: list[CacheTier] = field(default_factory=list)
    error: DepCacheError | None = None


class ResolutionPipeline:
    """分层缓存解析流水线"""

    def __init__(
        self,
        manifest: DependencyManifest,
        *,
        local: LocalCacheStore,
        shared: SharedCacheStore | None,
        installer: PackageInstaller,
        archiver: ArtifactArchiver,
        staging_root: str | Path | None = None,
    ) -> None:
        self.manifest = manifest
        self.local = local
        self.shared = shared
        self.installer = installer
        self.archiver = archiver
        self.staging_root = staging_root or None
        self.key = derive_key(manifest)
        self._handlers: dict[Stage, Callable[[_RunContext], Stage]] = {
            Stage.START: self._start,
            Stage.TRY_LOCAL: self._try_local,
            Stage.TRY_SHARED: self._try_shared,
            Stage.INSTALL: self._install,
            Stage.PUBLISH: self._publish,
            Stage.POSTINSTALL: self._postinstall,
        }

    def run(self) -> ResolutionResult:
        """执行一次解析

        Raises:
            DependenciesLoadingError: 三层全部失败
        """
        result = ResolutionResult(fingerprint=self.key.fingerprint, entry=self.key.filename)
        try:
            with staging_dir("depcache-run-", self.staging_root) as stage_dir:
                ctx = _RunContext(key=self.key, result=result, staging=stage_dir)
                stage = Stage.START
                while stage not in (Stage.DONE, Stage.FAIL):
                    result.stage = stage
                    logger.debug("流水线状态: %s", stage.value)
                    stage = self._handlers[stage](ctx)
                result.stage = stage
        finally:
            self.cleanup()

        if result.stage is Stage.FAIL:
            raise DependenciesLoadingError(
                f"依赖加载失败: {ctx.error}"
            ) from ctx.error
        logger.info(
            "依赖就绪: %s (来源=%s)", self.key.filename,
            result.satisfied_from.value if result.satisfied_from else "-",
        )
        return result

    def cleanup(self) -> None:
        """删除生成的安装清单和共享层检出目录"""
        logger.info("清理临时文件和目录")
        try:
            self.installer.cleanup()
        finally:
            if self.shared is not None:
                self.shared.close()

    # ------------------------------------------------------------------
    # 状态处理
    # ------------------------------------------------------------------

    def _start(self, ctx: _RunContext) -> Stage:
        logger.info(
            "开始解析依赖: fingerprint=%s variant=%s",
            ctx.key.fingerprint[:12], ctx.key.variant.value,
        )
        return Stage.TRY_LOCAL

    def _try_local(self, ctx: _RunContext) -> Stage:
        try:
            blob = self.local.fetch(ctx.key)
            self.archiver.unpack(blob, ctx.key.roots)
        except CacheMissError as e:
            logger.info("本地缓存不可用: %s", e)
            ctx.result.tier_errors[Tier.LOCAL.value] = str(e)
            return Stage.TRY_SHARED
        except (ArchiveError, OSError) as e:
            # 损坏的条目删除后由后续层的回写替换
            logger.warning("本地缓存条目损坏，已丢弃: %s", e)
            ctx.result.tier_errors[Tier.LOCAL.value] = str(e)
            self.local.remove_one(ctx.key)
            return Stage.TRY_SHARED

        ctx.result.satisfied_from = Tier.LOCAL
        ctx.blob = blob
        if self.shared is not None and not self.local.is_shared_synced(ctx.key):
            ctx.publish_targets = [self.shared]
            return Stage.PUBLISH
        return Stage.POSTINSTALL

    def _try_shared(self, ctx: _RunContext) -> Stage:
        if self.shared is None:
            logger.info("共享缓存已禁用，跳过")
            return Stage.INSTALL
        try:
            blob = self.shared.fetch(ctx.key)
            self.archiver.unpack(blob, ctx.key.roots)
        except (CacheMissError, ArchiveError, ExternalToolError, OSError) as e:
            logger.info("共享缓存不可用: %s", e)
            ctx.result.tier_errors[Tier.SHARED.value] = str(e)
            return Stage.INSTALL

        ctx.result.satisfied_from = Tier.SHARED
        # 回写本地；共享层无需重新发布
        if self._publish_to(self.local, ctx, blob):
            self.local.mark_shared_synced(ctx.key)
        return Stage.POSTINSTALL

    def _install(self, ctx: _RunContext) -> Stage:
        try:
            self.installer.write_manifests(self.manifest)
            self.installer.install(self.manifest)
        except (ExternalToolError, InstallTimeoutError) as e:
            logger.error("安装失败: %s", e)
            ctx.result.tier_errors[Tier.INSTALLER.value] = str(e)
            ctx.error = e
            return Stage.FAIL
        except OSError as e:
            logger.error("无法生成安装清单: %s", e)
            ctx.error = DependenciesLoadingError(f"无法生成安装清单: {e}")
            return Stage.FAIL

        ctx.result.satisfied_from = Tier.INSTALLER
        try:
            ctx.blob = self.archiver.pack(ctx.key.roots, ctx.staging / ctx.key.filename)
        except ArchiveError as e:
            # 依赖已在工作区就绪，只是无法缓存
            logger.warning("打包失败，跳过缓存写入: %s", e)
            return Stage.POSTINSTALL

        ctx.publish_targets = [self.local]
        if self.shared is not None:
            ctx.publish_targets.append(self.shared)
        return Stage.PUBLISH

    def _publish(self, ctx: _RunContext) -> Stage:
        if ctx.blob is None:
            return Stage.POSTINSTALL
        shared_ok = False
        for tier in ctx.publish_targets:
            ok = self._publish_to(tier, ctx, ctx.blob)
            if tier.tier is Tier.SHARED:
                shared_ok = ok
        if shared_ok:
            self.local.mark_shared_synced(ctx.key)
        return Stage.POSTINSTALL

    def _publish_to(self, tier: CacheTier, ctx: _RunContext, blob: Path) -> bool:
        """尽力写入单个缓存层，返回条目最终是否存在于该层"""
        try:
            tier.publish(ctx.key, blob)
        except (DepCacheError, OSError) as e:
            logger.warning("写入%s缓存失败（不影响本次结果）: %s", tier.tier.value, e)
            ctx.result.published[tier.tier.value] = False
            return False
        ctx.result.published[tier.tier.value] = True
        return True

    def _postinstall(self, ctx: _RunContext) -> Stage:
        hooks = postinstall_hooks(self.manifest, self.archiver.work_dir)
        if hooks:
            ctx.result.postinstall_failures = self.installer.run_postinstall(hooks)
        return Stage.DONE
