"""依赖加载命令：install, fingerprint"""

from __future__ import annotations

import logging
import signal
from typing import TYPE_CHECKING

import click

from depcache.core.exceptions import DepCacheError
from depcache.core.fingerprint import derive_key

if TYPE_CHECKING:
    from depcache.cli import CliState
    from depcache.core.models import CacheKey
    from depcache.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def register(main: click.Group) -> None:
    main.add_command(install)
    main.add_command(show_fingerprint)


def _on_sigterm(signum: int, _frame: object) -> None:
    # 转换为 SystemExit，使 finally 中的清理得以执行
    raise SystemExit(128 + signum)


def _run_before_load(container: ServiceContainer, key: CacheKey) -> None:
    """执行配置中的加载前失效动作，失败不阻断加载"""
    action = container.config.before_load_action()
    if action is None:
        return
    name, target = action
    keep = key if name == "all_except_current" else None
    try:
        container.invalidation.invalidate_all(target, keep=keep)
    except DepCacheError as e:
        logger.warning("加载前清理失败（继续加载）: %s", e)


@click.command()
@click.pass_obj
def install(state: CliState) -> None:
    """加载依赖（本地缓存 → 共享缓存 → 安装器）"""
    from depcache.cli import load_container, load_manifest

    container = load_container(state)
    manifest = load_manifest(state, container)
    previous = signal.signal(signal.SIGTERM, _on_sigterm)
    try:
        _run_before_load(container, derive_key(manifest))
        result = container.pipeline(manifest).run()
    except DepCacheError as e:
        raise click.ClickException(str(e)) from e
    finally:
        signal.signal(signal.SIGTERM, previous)

    source = result.satisfied_from.value if result.satisfied_from else "-"
    click.echo(f"依赖就绪: 来源={source} 条目={result.entry}")
    for tier, ok in result.published.items():
        click.echo(f"  写入 {tier}: {'成功' if ok else '失败'}")
    if result.postinstall_failures:
        click.echo(f"postinstall 失败 {len(result.postinstall_failures)} 个:", err=True)
        for failure in result.postinstall_failures:
            click.echo(f"  {failure}", err=True)


@click.command(name="fingerprint")
@click.pass_obj
def show_fingerprint(state: CliState) -> None:
    """输出当前清单的指纹和缓存条目名"""
    from depcache.cli import load_container, load_manifest

    container = load_container(state)
    key = derive_key(load_manifest(state, container))
    click.echo(key.fingerprint)
    click.echo(key.filename)
