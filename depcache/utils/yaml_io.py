"""配置文件读取

配置文件的任何读取 / 解析问题都转换为 ConfigError，由 CLI 输出一行摘要。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from depcache.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

# 配置文件大小上限 (1MB)
MAX_YAML_SIZE = 1024 * 1024


def load_yaml(path: str | Path) -> dict[str, Any]:
    """读取 YAML 配置，空文件返回空字典

    Raises:
        ConfigError: 文件过大、无法读取、格式错误或顶层不是字典
    """
    p = Path(path)
    try:
        size = p.stat().st_size
        if size > MAX_YAML_SIZE:
            raise ConfigError(f"配置文件过大: {p} ({size} 字节)")
        with open(p, encoding="utf-8") as f:
            result = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("解析 YAML 文件失败: %s, 错误: %s", p, e)
        raise ConfigError(f"配置文件格式错误: {p}: {e}") from e
    except OSError as e:
        raise ConfigError(f"无法读取配置文件 {p}: {e}") from e

    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ConfigError(f"配置文件顶层必须是字典: {p} (实际类型: {type(result).__name__})")
    return result
