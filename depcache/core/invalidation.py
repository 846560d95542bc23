"""缓存失效服务

- invalidate_exact: 删除当前指纹对应的条目
- invalidate_all:   按各层实际内容枚举并删除全部条目，可保留当前指纹

两层独立执行：一层失败不影响另一层，全部尝试完后再抛出第一个错误。
共享层删除会同时清除本地条目上的“共享层已持有”标记，
使下次本地命中时重新回写共享层。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from depcache.core.exceptions import DepCacheError, ExternalToolError
from depcache.core.models import CacheKey, Target

if TYPE_CHECKING:
    from depcache.services.cache.local import LocalCacheStore
    from depcache.services.cache.shared import SharedCacheStore

logger = logging.getLogger(__name__)


class InvalidationService:
    """精确 / 批量缓存失效"""

    def __init__(self, local: LocalCacheStore, shared: SharedCacheStore | None) -> None:
        self.local = local
        self.shared = shared

    def invalidate_exact(self, key: CacheKey, target: Target = Target.BOTH) -> dict[str, list[str]]:
        """删除 key 对应的条目，返回 {层: 被删除的条目名}"""
        logger.info("失效当前缓存: %s (target=%s)", key.filename, target.value)
        return self._apply(
            target,
            local_op=lambda: [key.filename] if self.local.remove_one(key) else [],
            shared_op=lambda: [key.filename] if self._shared().remove_one(key) else [],
        )

    def invalidate_all(
        self, target: Target = Target.BOTH, keep: CacheKey | None = None,
    ) -> dict[str, list[str]]:
        """删除目标层的全部条目；keep 非空时保留该条目"""
        logger.info(
            "失效全部缓存 (target=%s%s)", target.value,
            f", 保留 {keep.filename}" if keep else "",
        )
        return self._apply(
            target,
            local_op=lambda: self.local.remove_all(keep),
            shared_op=lambda: self._shared().remove_all(keep),
        )

    def _shared(self) -> SharedCacheStore:
        if self.shared is None:
            raise ExternalToolError("共享缓存已禁用，无法执行共享层失效")
        return self.shared

    def _apply(
        self, target: Target, *,
        local_op: Callable[[], list[str]], shared_op: Callable[[], list[str]],
    ) -> dict[str, list[str]]:
        removed: dict[str, list[str]] = {}
        errors: list[DepCacheError] = []

        if target.includes_local:
            try:
                removed["local"] = local_op()
            except OSError as e:
                logger.error("本地缓存失效失败: %s", e)
                errors.append(DepCacheError(f"本地缓存失效失败: {e}"))

        if target.includes_shared:
            try:
                names = shared_op()
                removed["shared"] = names
                if names:
                    self.local.clear_shared_marks(names)
            except DepCacheError as e:
                logger.error("共享缓存失效失败: %s", e)
                errors.append(e)
            finally:
                if self.shared is not None:
                    self.shared.close()

        if errors:
            raise errors[0]
        return removed
