"""缓存键推导 — 清单 + 构建模式 → 稳定指纹

先规范化（键排序、紧凑分隔符）再哈希，
语义相同但键顺序不同的清单得到相同指纹。依赖列表本身保持清单顺序。
"""

from __future__ import annotations

import hashlib
import json

from depcache.core.models import CacheKey, DependencyManifest


def canonicalize(manifest: DependencyManifest) -> str:
    """清单的规范化 JSON 序列化"""
    payload = {
        "variant": manifest.variant.value,
        "dependencies": [d.to_dict() for d in manifest.dependencies],
        "resolutions": dict(manifest.resolutions),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint(manifest: DependencyManifest) -> str:
    return hashlib.sha256(canonicalize(manifest).encode("utf-8")).hexdigest()


def derive_key(manifest: DependencyManifest) -> CacheKey:
    """计算清单对应的缓存键"""
    return CacheKey(
        fingerprint=fingerprint(manifest),
        variant=manifest.variant,
        roots=manifest.roots,
    )
