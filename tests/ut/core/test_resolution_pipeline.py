"""ResolutionPipeline 单元测试

每个 Machine 代表一台构建机：独立的工作区、本地缓存和安装器，
通过 conftest 中的 RemoteRepo 共享同一个共享缓存仓库。
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from conftest import INSTALLED_FILES, FakeExecutor, FakeInstaller, make_manifest, read_tree

from depcache.core.archiver import ArtifactArchiver
from depcache.core.exceptions import DependenciesLoadingError, InstallTimeoutError
from depcache.core.fingerprint import derive_key
from depcache.core.models import Stage, Tier
from depcache.core.pipeline import ResolutionPipeline
from depcache.services.cache.local import LocalCacheStore
from depcache.services.cache.shared import SharedCacheStore
from depcache.services.vcs.svn import SvnClient


class Machine:
    def __init__(self, root: Path, client_factory, **installer_opts) -> None:
        self.root = root
        self.work = root / "work"
        self.work.mkdir(parents=True)
        self.stage = root / "stage"
        self.local = LocalCacheStore(root / "local")
        self.shared = SharedCacheStore(client_factory, staging_root=root / "shared-stage")
        self.installer = FakeInstaller(self.work, **installer_opts)
        self.archiver = ArtifactArchiver(self.work, staging_root=self.stage)

    def pipeline(self, manifest, *, shared: bool = True) -> ResolutionPipeline:
        return ResolutionPipeline(
            manifest,
            local=self.local,
            shared=self.shared if shared else None,
            installer=self.installer,
            archiver=self.archiver,
            staging_root=self.stage,
        )

    def run(self, manifest, *, shared: bool = True):
        return self.pipeline(manifest, shared=shared).run()

    def leftovers(self) -> list[Path]:
        found: list[Path] = []
        for d in (self.stage, self.root / "shared-stage"):
            if d.exists():
                found.extend(d.iterdir())
        found.extend(p for p in self.work.iterdir() if p.is_file())
        return found


@pytest.fixture()
def machine(tmp_path, client_factory) -> Machine:
    return Machine(tmp_path / "m1", client_factory[0])


class TestTierPrecedence:
    def test_full_miss_installs_once_and_publishes_everywhere(self, machine, remote, manifest) -> None:
        key = derive_key(manifest)
        result = machine.run(manifest)

        assert result.success
        assert result.satisfied_from is Tier.INSTALLER
        assert machine.installer.install_calls == 1
        assert result.published == {"local": True, "shared": True}
        assert machine.local.exists(key)
        assert list(remote.files) == [key.filename]
        assert len(remote.commits) == 1
        assert machine.local.is_shared_synced(key)
        assert read_tree(machine.work) == INSTALLED_FILES

    def test_second_run_uses_local_only(self, machine, remote, manifest, client_factory) -> None:
        _, clients = client_factory
        machine.run(manifest)
        created = len(clients)
        commits = len(remote.commits)

        shutil.rmtree(machine.work / "node_modules")
        shutil.rmtree(machine.work / "libs")
        result = machine.run(manifest)

        assert result.satisfied_from is Tier.LOCAL
        assert machine.installer.install_calls == 1
        assert len(clients) == created
        assert len(remote.commits) == commits
        assert result.published == {}
        assert read_tree(machine.work) == INSTALLED_FILES

    def test_shared_hit_populates_local(self, tmp_path, remote, manifest, client_factory) -> None:
        factory, _ = client_factory
        a = Machine(tmp_path / "a", factory)
        b = Machine(tmp_path / "b", factory)
        key = derive_key(manifest)
        a.run(manifest)

        result = b.run(manifest)

        assert result.satisfied_from is Tier.SHARED
        assert b.installer.install_calls == 0
        assert b.local.exists(key)
        assert b.local.is_shared_synced(key)
        assert len(remote.commits) == 1
        assert result.published == {"local": True}
        assert read_tree(b.work) == INSTALLED_FILES

    def test_local_hit_writes_through_when_shared_unknown(self, machine, remote, manifest) -> None:
        key = derive_key(manifest)
        machine.run(manifest, shared=False)
        assert not remote.files
        assert not machine.local.is_shared_synced(key)

        result = machine.run(manifest)

        assert result.satisfied_from is Tier.LOCAL
        assert result.published == {"shared": True}
        assert key.filename in remote.files
        assert machine.local.is_shared_synced(key)
        assert machine.installer.install_calls == 1

    def test_changed_manifest_installs_again(self, machine, remote, manifest) -> None:
        machine.run(manifest)
        changed = make_manifest(a_version="1.0.1")
        result = machine.run(changed)
        assert result.satisfied_from is Tier.INSTALLER
        assert machine.installer.install_calls == 2
        assert len(remote.files) == 2


class TestFallback:
    def test_shared_unavailable_falls_back_to_install(self, machine, remote, manifest) -> None:
        remote.fail_commands = {"list"}
        result = machine.run(manifest)

        assert result.success
        assert result.satisfied_from is Tier.INSTALLER
        assert "shared" in result.tier_errors
        assert result.published == {"local": True, "shared": False}
        assert not machine.local.is_shared_synced(derive_key(manifest))

    def test_shared_timeout_falls_back_to_install(self, tmp_path, manifest) -> None:
        def hanging(cmd, *, cwd=".", timeout=None):
            raise subprocess.TimeoutExpired(cmd, timeout)

        ex = FakeExecutor(hanging)
        m = Machine(tmp_path / "m", lambda wd: SvnClient("svn://x/c", wd, ex, timeout=5))

        result = m.run(manifest)

        assert result.success
        assert result.satisfied_from is Tier.INSTALLER
        assert "shared" in result.tier_errors
        assert result.published == {"local": True, "shared": False}
        assert all(c["timeout"] == 5 for c in ex.calls)
        assert m.leftovers() == []

    def test_shared_disabled(self, machine, remote, manifest) -> None:
        result = machine.run(manifest, shared=False)
        assert result.satisfied_from is Tier.INSTALLER
        assert result.published == {"local": True}
        assert not remote.files

    def test_corrupt_local_entry_replaced(self, machine, manifest) -> None:
        key = derive_key(manifest)
        machine.local.path_for(key).write_bytes(b"garbage")

        result = machine.run(manifest, shared=False)

        assert result.satisfied_from is Tier.INSTALLER
        assert "local" in result.tier_errors
        assert result.published == {"local": True}
        assert machine.local.path_for(key).read_bytes() != b"garbage"

    def test_publish_race_is_success(self, machine, remote, manifest) -> None:
        key = derive_key(manifest)

        def other_machine_wins(names: list[str]) -> None:
            for n in names:
                remote.files[n] = b"from-other-machine"

        remote.before_commit = other_machine_wins
        result = machine.run(manifest)

        assert result.published == {"local": True, "shared": True}
        assert remote.files[key.filename] == b"from-other-machine"
        assert remote.commits == []


class TestFailure:
    def test_install_failure(self, tmp_path, client_factory, manifest) -> None:
        m = Machine(tmp_path / "m", client_factory[0], fail=True)
        with pytest.raises(DependenciesLoadingError, match="依赖加载失败"):
            m.run(manifest)
        assert m.installer.cleanup_calls == 1
        assert m.local.list_entries() == []
        assert m.leftovers() == []

    def test_install_timeout(self, tmp_path, client_factory, manifest) -> None:
        m = Machine(tmp_path / "m", client_factory[0], timeout=True)
        with pytest.raises(DependenciesLoadingError) as exc_info:
            m.run(manifest)
        assert isinstance(exc_info.value.__cause__, InstallTimeoutError)
        assert m.leftovers() == []

    def test_interrupt_still_cleans_up(self, machine, manifest, monkeypatch) -> None:
        def interrupted(_manifest) -> None:
            raise KeyboardInterrupt

        monkeypatch.setattr(machine.installer, "install", interrupted)
        with pytest.raises(KeyboardInterrupt):
            machine.run(manifest)
        assert machine.installer.cleanup_calls == 1
        assert machine.leftovers() == []

    def test_success_leaves_no_staging(self, machine, manifest) -> None:
        machine.run(manifest)
        assert machine.leftovers() == []
        assert machine.shared.staging_path is None


class TestPostinstall:
    def test_hooks_run_after_load(self, machine) -> None:
        manifest = make_manifest(b_postinstall="make")
        result = machine.run(manifest)
        assert result.stage is Stage.DONE
        assert [h.name for h in machine.installer.hooks_run] == ["b"]
        assert machine.installer.hooks_run[0].working_path == machine.work.resolve() / "libs" / "b"

    def test_hook_failure_does_not_fail_run(self, machine, monkeypatch) -> None:
        monkeypatch.setattr(machine.installer, "run_postinstall", lambda hooks: ["b: boom"])
        result = machine.run(make_manifest(b_postinstall="make"))
        assert result.success
        assert result.postinstall_failures == ["b: boom"]


class TestScenario:
    def test_two_runs(self, machine, remote, client_factory) -> None:
        """首次全部未命中安装一次并写入两层，第二次仅从本地加载"""
        _, clients = client_factory
        manifest = make_manifest()
        key = derive_key(manifest)

        first = machine.run(manifest)
        assert first.satisfied_from is Tier.INSTALLER
        assert machine.installer.install_calls == 1
        assert machine.local.exists(key)
        assert key.filename in remote.files

        calls_before = sum(len(c.calls) for c in clients)
        created = len(clients)
        second = machine.run(manifest)
        assert second.satisfied_from is Tier.LOCAL
        assert second.fingerprint == first.fingerprint
        assert machine.installer.install_calls == 1
        assert len(clients) == created
        assert sum(len(c.calls) for c in clients) == calls_before
