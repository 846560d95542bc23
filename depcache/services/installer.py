"""包安装器 — 缓存全部未命中时的权威来源

职责:
- 由清单生成各生态的安装清单（package.json / bower.json）和目录映射配置（.bowerrc）
- 在统一时限内执行 registry 安装器（npm / yarn）与 bower，超时即终止进程
- 清理生成的文件；工作区中原有的同名文件先备份，清理时恢复
- 执行 postinstall 钩子
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from pathlib import Path

from depcache.core.exceptions import (
    ExternalToolError,
    InstallTimeoutError,
    PostinstallError,
)
from depcache.core.models import (
    VCS_ROOT,
    DependencyKind,
    DependencyManifest,
    PostinstallHook,
)
from depcache.utils.shell import CommandExecutor, CommandResult, format_cmd

logger = logging.getLogger(__name__)

NPM_CONFIG_NAME = "package.json"
BOWER_CONFIG_NAME = "bower.json"
BOWER_RC_NAME = ".bowerrc"

# 安装期间生成或由安装器产生的文件，安装前备份工作区中的同名文件
GENERATED_FILES = (
    NPM_CONFIG_NAME, BOWER_CONFIG_NAME, BOWER_RC_NAME,
    "package-lock.json", "yarn.lock",
)
BACKUP_SUFFIX = ".depcache-bak"

REGISTRY_COMMANDS: dict[str, list[str]] = {
    "npm": ["npm", "install", "--no-audit", "--no-fund"],
    "yarn": ["yarn", "install", "--non-interactive", "--no-lockfile"],
}
BOWER_COMMAND = ["bower", "install", "--allow-root", "--config.interactive=false"]


class PackageInstaller:
    """外部安装器封装（作为黑盒调用）"""

    def __init__(
        self, work_dir: str | Path, executor: CommandExecutor, *,
        installer: str = "npm", timeout: float = 600,
    ) -> None:
        self.work_dir = Path(work_dir)
        self.installer = installer
        self.timeout = timeout
        self._executor = executor
        self._written: list[Path] = []
        self._backups: list[tuple[Path, Path]] = []

    # ------------------------------------------------------------------
    # 生成安装清单
    # ------------------------------------------------------------------

    def write_manifests(self, manifest: DependencyManifest) -> list[Path]:
        """生成 package.json / bower.json / .bowerrc"""
        npm_json: dict[str, object] = {
            "name": "depcache-install",
            "private": True,
            "dependencies": {
                d.name: d.version for d in manifest.of_kind(DependencyKind.REGISTRY)
            },
        }
        bower_json: dict[str, object] = {
            "name": "depcache-install",
            "dependencies": {
                d.name: f"{d.repo}#{d.ref}" for d in manifest.of_kind(DependencyKind.VCS)
            },
            "resolutions": dict(manifest.resolutions),
        }
        configs = {
            NPM_CONFIG_NAME: npm_json,
            BOWER_CONFIG_NAME: bower_json,
            BOWER_RC_NAME: {"directory": VCS_ROOT, "interactive": False},
        }

        self._backup_existing()
        for name, data in configs.items():
            path = self.work_dir / name
            path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
            self._written.append(path)
            logger.debug("生成安装配置: %s", path)
        return list(self._written)

    def _backup_existing(self) -> None:
        for name in GENERATED_FILES:
            path = self.work_dir / name
            if path.exists() and not any(p == path for p, _ in self._backups):
                backup = path.with_name(name + BACKUP_SUFFIX)
                path.replace(backup)
                self._backups.append((path, backup))
                logger.info("备份工作区已有文件: %s -> %s", path.name, backup.name)

    def cleanup(self) -> None:
        """删除生成的文件并恢复备份，可重复调用

        未生成过安装清单时不触碰工作区。
        """
        if not self._written and not self._backups:
            return
        for name in GENERATED_FILES:
            path = self.work_dir / name
            if path.exists():
                path.unlink()
                logger.debug("已删除: %s", path)
        for path, backup in self._backups:
            if backup.exists():
                backup.replace(path)
                logger.info("已恢复: %s", path.name)
        self._written.clear()
        self._backups.clear()

    # ------------------------------------------------------------------
    # 安装
    # ------------------------------------------------------------------

    def commands(self, manifest: DependencyManifest) -> list[list[str]]:
        cmds: list[list[str]] = []
        if manifest.of_kind(DependencyKind.REGISTRY):
            cmds.append(list(REGISTRY_COMMANDS[self.installer]))
        if manifest.of_kind(DependencyKind.VCS):
            cmds.append(list(BOWER_COMMAND))
        return cmds

    def install(self, manifest: DependencyManifest) -> None:
        """在统一时限内依次执行安装命令

        Raises:
            InstallTimeoutError: 超过 timeout，进程已被终止
            ExternalToolError: 任一安装命令返回非零
        """
        deadline = time.monotonic() + self.timeout
        for cmd in self.commands(manifest):
            text = format_cmd(cmd)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise InstallTimeoutError(f"安装超时 ({self.timeout}s)，未执行: {text}")
            logger.info("执行安装: %s", text)
            try:
                r = self._executor.execute(cmd, cwd=str(self.work_dir), timeout=remaining)
            except subprocess.TimeoutExpired as e:
                raise InstallTimeoutError(f"安装超时 ({self.timeout}s): {text}") from e
            except OSError as e:
                raise ExternalToolError(f"无法启动安装器 {text}: {e}", command=text) from e
            self._log_output(text, r)
            if not r.success:
                raise ExternalToolError(
                    f"{text} 失败 (rc={r.returncode})",
                    command=text, returncode=r.returncode,
                    output=(r.stdout + r.stderr)[-2000:],
                )
            logger.info("%s 完成", text)

    @staticmethod
    def _log_output(label: str, r: CommandResult) -> None:
        if r.stdout:
            logger.debug("%s stdout: %s", label, r.stdout.rstrip())
        for line in r.stderr.splitlines():
            # 错误在任何模式下都输出，警告只在 verbose 模式下可见
            if "ERR!" in line:
                logger.error("%s: %s", label, line)
            elif line.strip():
                logger.debug("%s stderr: %s", label, line)

    # ------------------------------------------------------------------
    # postinstall
    # ------------------------------------------------------------------

    def run_postinstall(self, hooks: list[PostinstallHook]) -> list[str]:
        """依次执行钩子，失败只记录日志，返回失败描述列表"""
        failures: list[str] = []
        for hook in hooks:
            logger.info("postinstall [%s]: %s (cwd=%s)", hook.name, hook.command, hook.working_path)
            try:
                if not hook.working_path.is_dir():
                    raise PostinstallError(f"工作目录不存在: {hook.working_path}")
                # 钩子是 shell 命令行，可能包含 && 和重定向
                r = self._executor.execute(
                    ["sh", "-c", hook.command], cwd=str(hook.working_path),
                )
                if r.stdout:
                    logger.debug("postinstall [%s] stdout: %s", hook.name, r.stdout.rstrip())
                if not r.success:
                    raise PostinstallError(
                        f"{hook.command} 失败 (rc={r.returncode}): {r.stderr[:500]}"
                    )
            except (PostinstallError, OSError) as e:
                logger.warning("postinstall 失败 [%s]: %s", hook.name, e)
                failures.append(f"{hook.name}: {e}")
        return failures
