"""测试共享 fixture — 内存版共享仓库 + 可编排的命令执行器 + 假安装器

  RemoteRepo           多个 FakeRepositoryClient 共享同一个 RemoteRepo，
  ┌──────────┐         模拟多台构建机并发操作同一个版本库
  │ files    │<──── client A (workdir A)
  │ commits  │<──── client B (workdir B)
  └──────────┘

FakeInstaller 在工作区中直接生成 node_modules / libs，
并记录调用次数，用于验证层级回退顺序。
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from depcache.core.exceptions import ExternalToolError, InstallTimeoutError
from depcache.core.models import (
    DependencyKind,
    DependencyManifest,
    DependencySpec,
    PostinstallHook,
    Variant,
)
from depcache.utils.shell import CommandResult

# =========================================================================
# 命令执行器
# =========================================================================


class FakeExecutor:
    """记录调用并按 handler 返回结果；handler 缺省时一律成功"""

    def __init__(self, handler: Callable[..., CommandResult] | None = None) -> None:
        self.calls: list[dict] = []
        self._handler = handler

    def execute(self, cmd, *, cwd=".", env=None, timeout=None) -> CommandResult:
        self.calls.append({"cmd": cmd, "cwd": cwd, "timeout": timeout})
        if self._handler is not None:
            return self._handler(cmd, cwd=cwd, timeout=timeout)
        return CommandResult(returncode=0, stdout="", stderr="")

    @property
    def commands(self) -> list[str]:
        return [c["cmd"] if isinstance(c["cmd"], str) else " ".join(c["cmd"]) for c in self.calls]


# =========================================================================
# 内存共享仓库
# =========================================================================


class RemoteRepo:
    """版本库服务端状态"""

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.commits: list[str] = []
        self.fail_commands: set[str] = set()
        # 在 add_and_commit 真正提交前调用，模拟其他构建机抢先提交
        self.before_commit: Callable[[list[str]], None] | None = None

    def check(self, command: str) -> None:
        if command in self.fail_commands:
            raise ExternalToolError(f"{command} 失败 (rc=1): simulated", command=command, returncode=1)


class FakeRepositoryClient:
    """RepositoryClient 的内存实现"""

    def __init__(self, remote: RemoteRepo, workdir: Path) -> None:
        self.remote = remote
        self.workdir = workdir
        self.calls: list[str] = []
        self.prepared = False

    def prepare(self) -> None:
        self.calls.append("prepare")
        self.remote.check("prepare")
        self.prepared = True

    def list_entries(self) -> set[str]:
        self.prepare()
        self.calls.append("list")
        self.remote.check("list")
        return set(self.remote.files)

    def update(self, names: list[str]) -> None:
        self.calls.append("update")
        self.remote.check("update")
        for name in names:
            (self.workdir / name).write_bytes(self.remote.files[name])

    def add_and_commit(self, names: list[str], message: str) -> None:
        self.calls.append("commit")
        self.remote.check("commit")
        if self.remote.before_commit is not None:
            self.remote.before_commit(names)
        for name in names:
            if name in self.remote.files:
                raise ExternalToolError(f"commit 失败: {name} already exists", returncode=1)
        for name in names:
            self.remote.files[name] = (self.workdir / name).read_bytes()
        self.remote.commits.append(message)

    def remove_and_commit(self, names: list[str], message: str) -> None:
        self.calls.append("remove")
        self.remote.check("remove")
        for name in names:
            self.remote.files.pop(name)
        self.remote.commits.append(message)


@pytest.fixture()
def remote() -> RemoteRepo:
    return RemoteRepo()


@pytest.fixture()
def client_factory(remote: RemoteRepo):
    """返回 (factory, clients)，clients 收集所有创建过的客户端"""
    clients: list[FakeRepositoryClient] = []

    def factory(workdir: Path) -> FakeRepositoryClient:
        c = FakeRepositoryClient(remote, workdir)
        clients.append(c)
        return c

    return factory, clients


# =========================================================================
# 清单 & 工作区
# =========================================================================


def make_manifest(variant: Variant = Variant.PRODUCTION, **overrides: str) -> DependencyManifest:
    """场景清单: a (registry 1.0.0) + b (vcs c1)"""
    return DependencyManifest(
        dependencies=(
            DependencySpec(name="a", kind=DependencyKind.REGISTRY,
                           version=overrides.get("a_version", "1.0.0")),
            DependencySpec(name="b", kind=DependencyKind.VCS, repo="git://example.com/b.git",
                           ref=overrides.get("b_ref", "c1"),
                           postinstall=overrides.get("b_postinstall", "")),
        ),
        variant=variant,
    )


@pytest.fixture()
def manifest() -> DependencyManifest:
    return make_manifest()


def write_tree(root: Path, files: dict[str, str]) -> None:
    for rel, content in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")


def read_tree(root: Path) -> dict[str, str]:
    return {
        str(p.relative_to(root)): p.read_text(encoding="utf-8")
        for p in sorted(root.rglob("*")) if p.is_file()
    }


INSTALLED_FILES = {
    "node_modules/a/index.js": "module.exports = 'a';\n",
    "node_modules/a/package.json": '{"name": "a", "version": "1.0.0"}\n',
    "libs/b/b.js": "var b = 1;\n",
}


# =========================================================================
# 假安装器
# =========================================================================


class FakeInstaller:
    """PackageInstaller 的替身：install 时直接在工作区落地依赖"""

    def __init__(self, work_dir: Path, *, fail: bool = False, timeout: bool = False) -> None:
        self.work_dir = work_dir
        self.fail = fail
        self.timeout = timeout
        self.install_calls = 0
        self.cleanup_calls = 0
        self.generated: list[Path] = []
        self.hooks_run: list[PostinstallHook] = []

    def write_manifests(self, manifest: DependencyManifest) -> list[Path]:
        path = self.work_dir / "package.json"
        path.write_text("{}", encoding="utf-8")
        self.generated.append(path)
        return [path]

    def install(self, manifest: DependencyManifest) -> None:
        self.install_calls += 1
        if self.timeout:
            raise InstallTimeoutError("安装超时 (1s): npm install")
        if self.fail:
            raise ExternalToolError("npm install 失败 (rc=1)", returncode=1)
        write_tree(self.work_dir, INSTALLED_FILES)

    def cleanup(self) -> None:
        self.cleanup_calls += 1
        for p in self.generated:
            p.unlink(missing_ok=True)

    def run_postinstall(self, hooks: list[PostinstallHook]) -> list[str]:
        self.hooks_run.extend(hooks)
        return []
