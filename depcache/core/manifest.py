"""依赖清单解析

从配置文件的 dependencies / resolutions 段构造不可变的 DependencyManifest。
生产模式下过滤掉 dev: true 的依赖，开发模式保留全部。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from depcache.core.exceptions import ConfigError
from depcache.core.models import (
    DependencyKind,
    DependencyManifest,
    DependencySpec,
    PostinstallHook,
    Variant,
)

logger = logging.getLogger(__name__)

# 原始清单中 vcs 依赖的旧写法
_VCS_ALIASES = {"git", "svn"}


def _parse_kind(raw: Any, name: str) -> DependencyKind:
    value = str(raw or DependencyKind.REGISTRY.value).lower()
    if value in _VCS_ALIASES:
        return DependencyKind.VCS
    try:
        return DependencyKind(value)
    except ValueError:
        raise ConfigError(f"依赖 '{name}' 的 kind 不支持: {raw}") from None


def parse_dependency(entry: Any) -> DependencySpec:
    """解析单条依赖声明"""
    if not isinstance(entry, dict):
        raise ConfigError(f"依赖声明必须是字典: {entry!r}")
    name = str(entry.get("name") or "").strip()
    if not name:
        raise ConfigError(f"依赖声明缺少 name: {entry!r}")

    kind = _parse_kind(entry.get("kind") or entry.get("type"), name)
    spec = DependencySpec(
        name=name,
        kind=kind,
        version=str(entry.get("version") or ""),
        repo=str(entry.get("repo") or ""),
        ref=str(entry.get("ref") or entry.get("commit") or ""),
        postinstall=str(entry.get("postinstall") or ""),
        dev=bool(entry.get("dev", False)),
    )
    if kind is DependencyKind.REGISTRY and not spec.version:
        raise ConfigError(f"registry 依赖 '{name}' 未指定 version")
    if kind is DependencyKind.VCS and not (spec.repo and spec.ref):
        raise ConfigError(f"vcs 依赖 '{name}' 必须同时指定 repo 和 ref")
    return spec


def parse_manifest(
    data: dict[str, Any], variant: Variant = Variant.PRODUCTION,
) -> DependencyManifest:
    """从配置字典构造清单

    Raises:
        ConfigError: 依赖列表为空或声明无效
    """
    raw_deps = data.get("dependencies") or []
    if not isinstance(raw_deps, list) or not raw_deps:
        raise ConfigError("依赖列表为空")

    deps = [parse_dependency(entry) for entry in raw_deps]
    names = [d.name for d in deps]
    duplicated = sorted({n for n in names if names.count(n) > 1})
    if duplicated:
        raise ConfigError(f"依赖重复声明: {', '.join(duplicated)}")

    if variant is Variant.PRODUCTION:
        deps = [d for d in deps if not d.dev]
        if not deps:
            raise ConfigError("生产模式下没有需要加载的依赖")

    raw_res = data.get("resolutions") or {}
    if not isinstance(raw_res, dict):
        raise ConfigError("resolutions 必须是字典")
    resolutions = tuple(sorted((str(k), str(v)) for k, v in raw_res.items()))

    manifest = DependencyManifest(
        dependencies=tuple(deps), variant=variant, resolutions=resolutions,
    )
    logger.info(
        "已加载 %d 个依赖 (variant=%s, roots=%s)",
        len(deps), variant.value, ",".join(manifest.roots),
    )
    return manifest


def postinstall_hooks(manifest: DependencyManifest, work_dir: str | Path) -> list[PostinstallHook]:
    """从清单推导 postinstall 钩子，工作目录为依赖落地后的目录"""
    base = Path(work_dir)
    return [
        PostinstallHook(working_path=base / d.root / d.name, command=d.postinstall, name=d.name)
        for d in manifest.dependencies if d.postinstall
    ]
