"""Shell 命令执行工具 — 统一子进程调用

通过 CommandExecutor 协议抽象子进程执行，方便测试替换。
仓库客户端、安装器、postinstall 钩子全部经由注入的执行器调用外部命令。
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Protocol

from depcache.core.exceptions import ExternalToolError

logger = logging.getLogger(__name__)


# =========================================================================
# 命令执行结果
# =========================================================================

@dataclass
class CommandResult:
    """命令执行结果（与 subprocess 解耦）"""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


# =========================================================================
# 命令执行器协议
# =========================================================================

class CommandExecutor(Protocol):
    """命令执行器协议 — 抽象子进程调用

    超时时实现必须终止子进程并抛出 subprocess.TimeoutExpired。
    测试时可注入 fake 实现，无需 patch subprocess。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """执行命令并返回结果"""
        ...


# =========================================================================
# 默认实现: 本地执行器
# =========================================================================

class LocalExecutor:
    """本地命令执行器（默认实现）

    subprocess.run 在超时时会先 kill 子进程再抛出 TimeoutExpired。
    """

    def execute(
        self,
        cmd: str | list[str],
        *,
        cwd: str = ".",
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        args = shlex.split(cmd) if isinstance(cmd, str) else cmd
        r = subprocess.run(
            args, capture_output=True, text=True,
            cwd=cwd, env=env, check=False, timeout=timeout,
        )
        return CommandResult(
            returncode=r.returncode,
            stdout=r.stdout,
            stderr=r.stderr,
        )


def format_cmd(cmd: str | list[str]) -> str:
    return cmd if isinstance(cmd, str) else shlex.join(cmd)


def run_checked(
    executor: CommandExecutor,
    cmd: str | list[str], *,
    cwd: str = ".",
    env: dict[str, str] | None = None,
    timeout: float | None = None,
    label: str = "cmd",
) -> CommandResult:
    """执行命令，非零退出码、超时或无法启动都抛 ExternalToolError

    stdout/stderr 以 DEBUG 级别输出，verbose 模式下可见。

    Args:
        executor: 命令执行器
        cmd: 命令字符串或参数列表
        cwd: 工作目录
        env: 环境变量（不传则继承当前进程）
        timeout: 超时秒数，None 表示不限
        label: 日志标签
    """
    text = format_cmd(cmd)
    logger.info("  %s: %s (cwd=%s)", label, text, cwd)
    try:
        r = executor.execute(cmd, cwd=cwd, env=env, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise ExternalToolError(f"{label}超时 ({timeout}s)", command=text) from e
    except OSError as e:
        # 可执行文件不存在或工作目录不可用
        raise ExternalToolError(f"无法执行{label}: {e}", command=text) from e
    if r.stdout:
        logger.debug("  %s stdout: %s", label, r.stdout.rstrip())
    if r.stderr:
        logger.debug("  %s stderr: %s", label, r.stderr.rstrip())
    if not r.success:
        raise ExternalToolError(
            f"{label}失败 (rc={r.returncode}): {r.stderr[:500]}",
            command=text, returncode=r.returncode,
            output=(r.stdout + r.stderr)[-2000:],
        )
    return r
