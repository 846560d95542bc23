"""缓存失效命令：invalidate-exact, invalidate-all, invalidate-all-except-current"""

from __future__ import annotations

from typing import TYPE_CHECKING

import click

from depcache.core.exceptions import DepCacheError
from depcache.core.fingerprint import derive_key
from depcache.core.models import Target

if TYPE_CHECKING:
    from depcache.cli import CliState

_TARGET_OPTION = click.option(
    "--target", "-t", default=Target.BOTH.value, show_default=True,
    type=click.Choice([t.value for t in Target]), help="失效目标层",
)


def register(main: click.Group) -> None:
    main.add_command(invalidate_exact)
    main.add_command(invalidate_all)
    main.add_command(invalidate_all_except_current)


def _echo_removed(removed: dict[str, list[str]]) -> None:
    for tier, names in removed.items():
        if not names:
            click.echo(f"{tier}: 无需删除")
            continue
        click.echo(f"{tier}: 已删除 {len(names)} 个条目")
        for name in names:
            click.echo(f"  - {name}")


@click.command(name="invalidate-exact")
@_TARGET_OPTION
@click.pass_obj
def invalidate_exact(state: CliState, target: str) -> None:
    """删除当前清单指纹对应的缓存"""
    from depcache.cli import load_container, load_manifest

    container = load_container(state)
    key = derive_key(load_manifest(state, container))
    try:
        removed = container.invalidation.invalidate_exact(key, Target(target))
    except DepCacheError as e:
        raise click.ClickException(str(e)) from e
    _echo_removed(removed)


@click.command(name="invalidate-all")
@_TARGET_OPTION
@click.pass_obj
def invalidate_all(state: CliState, target: str) -> None:
    """删除目标层的全部缓存"""
    from depcache.cli import load_container

    container = load_container(state)
    try:
        removed = container.invalidation.invalidate_all(Target(target))
    except DepCacheError as e:
        raise click.ClickException(str(e)) from e
    _echo_removed(removed)


@click.command(name="invalidate-all-except-current")
@_TARGET_OPTION
@click.pass_obj
def invalidate_all_except_current(state: CliState, target: str) -> None:
    """删除目标层除当前指纹外的全部缓存"""
    from depcache.cli import load_container, load_manifest

    container = load_container(state)
    key = derive_key(load_manifest(state, container))
    try:
        removed = container.invalidation.invalidate_all(Target(target), keep=key)
    except DepCacheError as e:
        raise click.ClickException(str(e)) from e
    _echo_removed(removed)
