"""核心数据模型

依赖清单、缓存键、缓存层级、流水线状态等领域实体集中定义于此。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class DependencyKind(str, Enum):
    """依赖来源类型"""

    REGISTRY = "registry"   # 包注册中心（npm / yarn）
    VCS = "vcs"             # 版本库引用（bower: repo#ref）


class Variant(str, Enum):
    """构建模式"""

    PRODUCTION = "production"
    DEVELOPMENT = "development"

    @property
    def marker(self) -> str:
        """缓存文件名中的变体标记"""
        return "prod" if self is Variant.PRODUCTION else "dev"


class Tier(str, Enum):
    """缓存层级，按声明顺序依次尝试"""

    LOCAL = "local"
    SHARED = "shared"
    INSTALLER = "installer"


class Target(str, Enum):
    """失效操作的目标层"""

    LOCAL = "local"
    SHARED = "shared"
    BOTH = "both"

    @property
    def includes_local(self) -> bool:
        return self in (Target.LOCAL, Target.BOTH)

    @property
    def includes_shared(self) -> bool:
        return self in (Target.SHARED, Target.BOTH)


class Stage(str, Enum):
    """解析流水线状态"""

    START = "start"
    TRY_LOCAL = "try_local"
    TRY_SHARED = "try_shared"
    INSTALL = "install"
    PUBLISH = "publish"
    POSTINSTALL = "postinstall"
    DONE = "done"
    FAIL = "fail"


# 每种依赖落地的根目录
REGISTRY_ROOT = "node_modules"
VCS_ROOT = "libs"

ROOT_BY_KIND: dict[DependencyKind, str] = {
    DependencyKind.REGISTRY: REGISTRY_ROOT,
    DependencyKind.VCS: VCS_ROOT,
}

ARCHIVE_EXT = "tar.gz"


@dataclass(frozen=True)
class DependencySpec:
    """单个依赖声明"""

    name: str
    kind: DependencyKind
    version: str = ""       # registry 依赖的版本
    repo: str = ""          # vcs 依赖的仓库地址
    ref: str = ""           # vcs 依赖的分支 / tag / commit
    postinstall: str = ""
    dev: bool = False

    @property
    def root(self) -> str:
        return ROOT_BY_KIND[self.kind]

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {"name": self.name, "kind": self.kind.value}
        if self.kind is DependencyKind.REGISTRY:
            data["version"] = self.version
        else:
            data["repo"] = self.repo
            data["ref"] = self.ref
        if self.postinstall:
            data["postinstall"] = self.postinstall
        if self.dev:
            data["dev"] = True
        return data


@dataclass(frozen=True)
class DependencyManifest:
    """一次解析的不可变输入：有序依赖列表 + 构建模式"""

    dependencies: tuple[DependencySpec, ...]
    variant: Variant = Variant.PRODUCTION
    resolutions: tuple[tuple[str, str], ...] = ()

    @property
    def roots(self) -> tuple[str, ...]:
        """清单涉及的依赖根目录（排序后，保证命名稳定）"""
        return tuple(sorted({d.root for d in self.dependencies}))

    def of_kind(self, kind: DependencyKind) -> list[DependencySpec]:
        return [d for d in self.dependencies if d.kind is kind]


@dataclass(frozen=True)
class CacheKey:
    """一个指纹对应的缓存条目

    文件名规则: <root-ids>_<variant-marker>_<fingerprint>.tar.gz
    """

    fingerprint: str
    variant: Variant
    roots: tuple[str, ...]

    @property
    def filename(self) -> str:
        root_id = "-".join(self.roots)
        return f"{root_id}_{self.variant.marker}_{self.fingerprint}.{ARCHIVE_EXT}"


@dataclass(frozen=True)
class PostinstallHook:
    """依赖就绪后执行的钩子"""

    working_path: Path
    command: str
    name: str = ""


@dataclass
class ResolutionResult:
    """一次解析运行的结果"""

    fingerprint: str
    entry: str
    satisfied_from: Tier | None = None
    stage: Stage = Stage.START
    published: dict[str, bool] = field(default_factory=dict)
    postinstall_failures: list[str] = field(default_factory=list)
    tier_errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.stage is Stage.DONE
