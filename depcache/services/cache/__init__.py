"""缓存层实现

- local.py: 本地磁盘缓存目录
- shared.py: 版本库共享缓存
"""

from depcache.services.cache.local import LocalCacheStore
from depcache.services.cache.shared import SharedCacheStore

__all__ = ["LocalCacheStore", "SharedCacheStore"]
