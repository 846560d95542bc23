"""依赖目录打包 / 解包

pack:   各依赖根目录并行复制到同一个临时组合目录（保留相对路径），
        再打成一个 tar.gz，组合目录无论成败都会删除。
unpack: 先删除工作区中对应的根目录，再直接解压到工作区。

任何 IO 错误统一转换为 ArchiveError，由流水线决定回退，不中断整体流程。
"""

from __future__ import annotations

import logging
import shutil
import tarfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from depcache.core.exceptions import ArchiveError
from depcache.utils.fs import staging_dir

logger = logging.getLogger(__name__)


class ArtifactArchiver:
    """依赖根目录归档器"""

    def __init__(self, work_dir: str | Path = ".", staging_root: str | Path | None = None,
                 max_workers: int = 4) -> None:
        self.work_dir = Path(work_dir).resolve()
        self.staging_root = staging_root or None
        self.max_workers = max(1, max_workers)

    def pack(self, roots: tuple[str, ...] | list[str], dest: Path) -> Path:
        """把依赖根目录打包为一个归档文件 dest

        缺失的根目录按空目录打包，保证解包后结构一致。
        """
        logger.info("打包依赖: %s -> %s", ", ".join(roots), dest)
        try:
            with staging_dir("depcache-pack-", self.staging_root) as stage:
                self._stage_roots(roots, stage)
                dest.parent.mkdir(parents=True, exist_ok=True)
                with tarfile.open(dest, "w:gz") as tf:
                    for root in roots:
                        tf.add(str(stage / root), arcname=root)
        except (OSError, tarfile.TarError, shutil.Error) as e:
            if dest.is_file():
                dest.unlink()
            raise ArchiveError(f"打包失败 {dest.name}: {e}") from e
        logger.info("打包完成: %s (%d 字节)", dest.name, dest.stat().st_size)
        return dest

    def _stage_roots(self, roots: tuple[str, ...] | list[str], stage: Path) -> None:
        # 各根目录路径互不相交，可并行复制
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self._copy_root, root, stage) for root in roots]
            for f in futures:
                f.result()

    def _copy_root(self, root: str, stage: Path) -> None:
        src = self.work_dir / root
        dst = stage / root
        if src.is_dir():
            shutil.copytree(src, dst, symlinks=True)
            logger.debug("  已暂存: %s", root)
        else:
            logger.warning("  依赖目录不存在，按空目录打包: %s", src)
            dst.mkdir(parents=True)

    def unpack(self, blob: Path, roots: tuple[str, ...] | list[str] = ()) -> None:
        """把归档解压到工作区

        roots 非空时先删除这些根目录，使结果与归档内容一致。
        """
        logger.info("解包依赖: %s -> %s", blob, self.work_dir)
        try:
            with tarfile.open(blob, "r:*") as tf:
                members = tf.getmembers()
                self._check_members(members, roots)
                for root in roots:
                    target = self.work_dir / root
                    if target.is_symlink() or target.is_file():
                        target.unlink()
                    elif target.exists():
                        shutil.rmtree(target)
                tf.extractall(path=str(self.work_dir), members=members, filter="data")
        except (OSError, tarfile.TarError, shutil.Error) as e:
            raise ArchiveError(f"解包失败 {blob.name}: {e}") from e
        logger.info("解包完成: %s", blob.name)

    @staticmethod
    def _check_members(members: list[tarfile.TarInfo], roots: tuple[str, ...] | list[str]) -> None:
        """归档只能包含声明的根目录"""
        if not roots:
            return
        allowed = set(roots)
        for m in members:
            top = m.name.split("/", 1)[0]
            if top not in allowed:
                raise ArchiveError(f"归档包含未声明的路径: {m.name}")
