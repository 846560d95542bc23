"""集中配置管理

配置文件同时包含存储配置与依赖清单:

    storage:
      local: .depcache
      shared: svn://host/cache
      backend: svn
    install_timeout: 600
    dependencies: [...]

Config 由入口显式构造后沿构造函数向下传递，不设全局单例。
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from depcache.core.exceptions import ConfigError
from depcache.core.manifest import parse_manifest
from depcache.core.models import DependencyManifest, Target, Variant
from depcache.utils.yaml_io import load_yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "depcache.yml"

SHARED_BACKENDS = ("svn", "git")
INSTALLERS = ("npm", "yarn")
BEFORE_LOAD_ACTIONS = ("all", "all_except_current")


@dataclass
class Config:
    """运行配置"""

    # 存储
    local_storage: str = ""
    shared_url: str = ""
    shared_backend: str = "svn"
    shared_branch: str = "main"
    shared_enabled: bool = True
    shared_timeout: float | None = None

    # 安装
    install_timeout: int = 600
    installer: str = "npm"

    # 目录
    work_dir: str = "."
    staging_root: str = ""
    log_file: str = ""

    # 清单原始数据（dependencies / resolutions）
    manifest_data: dict[str, Any] = field(default_factory=dict)
    before_load: dict[str, Any] = field(default_factory=dict)

    # 自定义扩展 (放不到字段里的配置项)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        storage = data.get("storage") or {}
        if not isinstance(storage, dict):
            raise ConfigError("storage 必须是字典")
        known = {
            "storage", "dependencies", "resolutions", "install_timeout",
            "installer", "work_dir", "staging_root", "log_file", "before_load",
            "shared_timeout",
        }
        try:
            install_timeout = int(data.get("install_timeout") or data.get("load_timeout") or 600)
            shared_timeout = data.get("shared_timeout")
            if shared_timeout is not None:
                shared_timeout = float(shared_timeout)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"超时配置必须是数字: {e}") from None
        cfg = cls(
            local_storage=str(storage.get("local") or ""),
            shared_url=str(storage.get("shared") or storage.get("svn") or ""),
            shared_backend=str(storage.get("backend") or "svn"),
            shared_branch=str(storage.get("branch") or "main"),
            shared_enabled=bool(storage.get("enabled", True)),
            shared_timeout=shared_timeout,
            install_timeout=install_timeout,
            installer=str(data.get("installer") or "npm"),
            work_dir=str(data.get("work_dir") or "."),
            staging_root=str(data.get("staging_root") or ""),
            log_file=str(data.get("log_file") or ""),
            manifest_data={
                "dependencies": data.get("dependencies") or [],
                "resolutions": data.get("resolutions") or {},
            },
            before_load=dict(data.get("before_load") or {}),
        )
        cfg.extra = {k: v for k, v in data.items() if k not in known and k != "load_timeout"}
        return cfg

    @classmethod
    def from_file(cls, path: str = DEFAULT_CONFIG_FILE) -> Config:
        """从 YAML 文件加载配置"""
        if not Path(path).exists():
            raise ConfigError(f"配置文件不存在: {path}")
        cfg = cls.from_dict(load_yaml(path))
        logger.info("配置已加载: %s", path)
        return cfg

    def validate(self) -> None:
        """预检：存储配置必须完整

        Raises:
            ConfigError: 本地缓存路径缺失、共享仓库地址缺失或取值不支持
        """
        if not self.local_storage:
            raise ConfigError("未配置本地缓存目录 (storage.local)")
        if self.shared_enabled and not self.shared_url:
            raise ConfigError("未配置共享缓存仓库 (storage.shared)")
        if self.shared_backend not in SHARED_BACKENDS:
            raise ConfigError(
                f"共享缓存后端不支持: {self.shared_backend}，可选: {', '.join(SHARED_BACKENDS)}"
            )
        if self.installer not in INSTALLERS:
            raise ConfigError(
                f"安装器不支持: {self.installer}，可选: {', '.join(INSTALLERS)}"
            )
        if self.install_timeout <= 0:
            raise ConfigError("install_timeout 必须为正数")
        if self.before_load:
            self.before_load_action()

    def manifest(self, variant: Variant = Variant.PRODUCTION) -> DependencyManifest:
        return parse_manifest(self.manifest_data, variant)

    def before_load_action(self) -> tuple[str, Target] | None:
        """解析加载前的失效动作，未配置返回 None"""
        if not self.before_load:
            return None
        action = str(self.before_load.get("invalidate") or "")
        if action not in BEFORE_LOAD_ACTIONS:
            raise ConfigError(f"before_load.invalidate 不支持: {action!r}")
        try:
            target = Target(str(self.before_load.get("target") or Target.BOTH.value))
        except ValueError:
            raise ConfigError(
                f"before_load.target 不支持: {self.before_load.get('target')!r}"
            ) from None
        return action, target

    @property
    def local_storage_path(self) -> Path:
        return (Path(self.work_dir) / self.local_storage).resolve()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
