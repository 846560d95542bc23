"""统一异常体系

所有业务异常继承 DepCacheError。
层级错误（缓存层失败）在流水线内转换为回退，只有依赖彻底无法加载时
才向 CLI 抛出 DependenciesLoadingError，CLI 据此输出一行摘要并返回非零退出码。
"""

from __future__ import annotations


class DepCacheError(Exception):
    """框架基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(DepCacheError):
    """存储配置缺失、依赖清单为空或格式无效（预检失败）"""

    code = "CONFIG_ERROR"


class CacheMissError(DepCacheError):
    """缓存未命中（软错误，驱动回退到下一层）"""

    code = "CACHE_MISS"


class ExternalToolError(DepCacheError):
    """外部命令（仓库客户端 / 安装器）返回非零退出码、超时或无法启动"""

    code = "EXTERNAL_TOOL_ERROR"

    def __init__(
        self, message: str, *,
        command: str = "", returncode: int | None = None, output: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.output = output


class InstallTimeoutError(DepCacheError):
    """安装器超过配置的时限，进程已被终止"""

    code = "INSTALL_TIMEOUT"


class ArchiveError(DepCacheError):
    """打包或解包过程中的 IO 错误"""

    code = "ARCHIVE_ERROR"


class PublishError(DepCacheError):
    """写回共享缓存失败（记录日志，不影响整体结果）"""

    code = "PUBLISH_ERROR"


class PostinstallError(DepCacheError):
    """postinstall 钩子执行失败（记录日志，不回滚已完成的加载）"""

    code = "POSTINSTALL_ERROR"


class DependenciesLoadingError(DepCacheError):
    """本地、共享、安装器三层全部失败"""

    code = "DEPENDENCIES_LOADING_ERROR"
