"""depcache 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
不带子命令调用时等同于 install。
"""

from __future__ import annotations

import os
from dataclasses import dataclass

import click

from depcache import __version__
from depcache.core.config import DEFAULT_CONFIG_FILE, Config
from depcache.core.exceptions import DepCacheError
from depcache.core.models import DependencyManifest, Variant
from depcache.services.container import ServiceContainer
from depcache.utils.logger import setup_logging
from depcache.utils.shell import CommandExecutor


@dataclass
class CliState:
    """全局选项，经 click 上下文传给各子命令"""

    config_path: str = DEFAULT_CONFIG_FILE
    verbose: bool = False
    json_log: bool = False
    dev: bool = False
    no_shared: bool = False
    executor: CommandExecutor | None = None


def _log_level(state: CliState) -> str:
    return "DEBUG" if state.verbose else os.getenv("DEPCACHE_LOG_LEVEL", "INFO")


def load_container(state: CliState) -> ServiceContainer:
    """加载配置并装配服务容器，配置无效时抛 ClickException"""
    try:
        cfg = Config.from_file(state.config_path)
        if state.no_shared:
            cfg.shared_enabled = False
        cfg.validate()
    except DepCacheError as e:
        raise click.ClickException(str(e)) from e
    if cfg.log_file:
        setup_logging(level=_log_level(state), json_output=state.json_log, log_file=cfg.log_file)
    return ServiceContainer(cfg, executor=state.executor)


def load_manifest(state: CliState, container: ServiceContainer) -> DependencyManifest:
    variant = Variant.DEVELOPMENT if state.dev else Variant.PRODUCTION
    try:
        return container.config.manifest(variant)
    except DepCacheError as e:
        raise click.ClickException(str(e)) from e


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("--config", "-c", "config_path", default=DEFAULT_CONFIG_FILE,
              show_default=True, help="配置文件路径")
@click.option("--verbose", "-v", is_flag=True, help="输出调试信息（包括外部命令输出）")
@click.option("--dev", is_flag=True, help="加载开发模式依赖")
@click.option("--no-shared", is_flag=True, help="禁用共享缓存")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool, dev: bool, no_shared: bool) -> None:
    """depcache - 基于清单指纹的分层依赖缓存"""
    state = ctx.ensure_object(CliState)
    state.config_path = config_path
    state.verbose = verbose
    state.dev = dev
    state.no_shared = no_shared
    state.json_log = os.getenv("DEPCACHE_LOG_JSON", "") == "1"
    setup_logging(level=_log_level(state), json_output=state.json_log)
    if ctx.invoked_subcommand is None:
        from depcache.cli.cmd_install import install
        ctx.invoke(install)


# 注册各领域子命令
from depcache.cli.cmd_install import register as _reg_install  # noqa: E402
from depcache.cli.cmd_invalidate import register as _reg_invalidate  # noqa: E402

_reg_install(main)
_reg_invalidate(main)
