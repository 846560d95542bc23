"""depcache - 基于清单指纹的分层依赖缓存"""

__version__ = "0.3.0"
