"""文件系统工具 — 暂存目录与原子落盘"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


@contextmanager
def staging_dir(prefix: str, root: str | Path | None = None) -> Iterator[Path]:
    """创建进程私有的临时暂存目录，退出时（含异常、中断）总是删除"""
    if root:
        Path(root).mkdir(parents=True, exist_ok=True)
    path = Path(tempfile.mkdtemp(prefix=prefix, dir=str(root) if root else None))
    logger.debug("创建暂存目录: %s", path)
    try:
        yield path
    finally:
        remove_tree(path)


def remove_tree(path: Path) -> None:
    """删除目录树，失败只记录日志"""
    if not path.exists():
        return
    shutil.rmtree(path, ignore_errors=True)
    if path.exists():
        logger.warning("暂存目录未能完全删除: %s", path)
    else:
        logger.debug("已删除目录: %s", path)


def atomic_copy(src: Path, dest: Path) -> None:
    """原子复制文件：先复制到同目录临时文件再 rename

    并发读取方永远看不到写了一半的目标文件。

    实现:
        1. 在目标目录创建临时文件
        2. 复制内容到临时文件
        3. os.replace 原子性地替换目标文件
        4. 如果失败，清理临时文件
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(dest.parent), prefix=f".{dest.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as out, open(src, "rb") as inp:
            shutil.copyfileobj(inp, out)
        os.replace(tmp, str(dest))
    except Exception:
        # 只捕获普通异常，不拦截 KeyboardInterrupt/SystemExit
        try:
            os.unlink(tmp)
        except OSError:
            # 临时文件清理失败不影响原异常抛出
            pass
        raise
