"""InvalidationService 单元测试"""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeExecutor, make_manifest

from depcache.core.exceptions import ExternalToolError
from depcache.core.fingerprint import derive_key
from depcache.core.invalidation import InvalidationService
from depcache.core.models import Target
from depcache.services.cache.local import LocalCacheStore
from depcache.services.cache.shared import SharedCacheStore
from depcache.services.vcs.svn import SvnClient

CURRENT = derive_key(make_manifest())
OLD_1 = derive_key(make_manifest(a_version="0.9.0"))
OLD_2 = derive_key(make_manifest(b_ref="c0"))


@pytest.fixture()
def local(tmp_path: Path) -> LocalCacheStore:
    store = LocalCacheStore(tmp_path / "local")
    blob = tmp_path / "blob.tar.gz"
    blob.write_bytes(b"blob")
    for key in (CURRENT, OLD_1, OLD_2):
        store.publish(key, blob)
        store.mark_shared_synced(key)
    return store


@pytest.fixture()
def shared(tmp_path, remote, client_factory) -> SharedCacheStore:
    for key in (CURRENT, OLD_1, OLD_2):
        remote.files[key.filename] = b"blob"
    return SharedCacheStore(client_factory[0], staging_root=tmp_path / "shared-stage")


@pytest.fixture()
def svc(local, shared) -> InvalidationService:
    return InvalidationService(local, shared)


class TestInvalidateAll:
    def test_local_except_current(self, svc, local, remote) -> None:
        removed = svc.invalidate_all(Target.LOCAL, keep=CURRENT)
        assert sorted(removed["local"]) == sorted([OLD_1.filename, OLD_2.filename])
        assert "shared" not in removed
        assert local.list_entries() == [CURRENT.filename]
        assert len(remote.files) == 3

    def test_local_all(self, svc, local) -> None:
        svc.invalidate_all(Target.LOCAL)
        assert local.list_entries() == []
        assert list(local.root.iterdir()) == []

    def test_shared_except_current(self, svc, local, remote) -> None:
        removed = svc.invalidate_all(Target.SHARED, keep=CURRENT)
        assert removed["shared"] == sorted([OLD_1.filename, OLD_2.filename])
        assert list(remote.files) == [CURRENT.filename]
        assert len(remote.commits) == 1
        assert remote.commits[0].startswith("depcache: remove 2 cache entries except ")
        # 本地条目保留，但不再认为共享层持有
        assert len(local.list_entries()) == 3
        assert local.is_shared_synced(CURRENT)
        assert not local.is_shared_synced(OLD_1)

    def test_both(self, svc, local, remote) -> None:
        removed = svc.invalidate_all(Target.BOTH)
        assert len(removed["local"]) == 3
        assert len(removed["shared"]) == 3
        assert local.list_entries() == []
        assert remote.files == {}

    def test_shared_empty_no_commit(self, svc, remote) -> None:
        remote.files.clear()
        removed = svc.invalidate_all(Target.SHARED)
        assert removed == {"shared": []}
        assert remote.commits == []

    def test_shared_checkout_removed(self, svc, shared) -> None:
        svc.invalidate_all(Target.SHARED)
        assert shared.staging_path is None


class TestInvalidateExact:
    def test_both(self, svc, local, remote) -> None:
        removed = svc.invalidate_exact(CURRENT, Target.BOTH)
        assert removed == {"local": [CURRENT.filename], "shared": [CURRENT.filename]}
        assert not local.exists(CURRENT)
        assert not local.is_shared_synced(CURRENT)
        assert CURRENT.filename not in remote.files
        assert len(remote.files) == 2

    def test_shared_absent_is_noop(self, svc, remote) -> None:
        del remote.files[CURRENT.filename]
        removed = svc.invalidate_exact(CURRENT, Target.SHARED)
        assert removed == {"shared": []}
        assert remote.commits == []

    def test_local_absent(self, svc, local) -> None:
        local.remove_one(CURRENT)
        assert svc.invalidate_exact(CURRENT, Target.LOCAL) == {"local": []}


class TestErrors:
    def test_shared_disabled(self, local) -> None:
        svc = InvalidationService(local, None)
        with pytest.raises(ExternalToolError, match="禁用"):
            svc.invalidate_all(Target.SHARED)

    def test_shared_disabled_local_still_works(self, local) -> None:
        svc = InvalidationService(local, None)
        assert len(svc.invalidate_all(Target.LOCAL)["local"]) == 3

    def test_shared_failure_does_not_block_local(self, svc, local, remote) -> None:
        remote.fail_commands = {"remove"}
        with pytest.raises(ExternalToolError):
            svc.invalidate_exact(CURRENT, Target.BOTH)
        assert not local.exists(CURRENT)
        assert CURRENT.filename in remote.files

    def test_missing_svn_binary(self, tmp_path, local) -> None:
        """svn 不在 PATH 上时抛出一行可读的错误，本地层照常失效"""

        def no_svn(cmd, *, cwd=".", timeout=None):
            raise FileNotFoundError(2, "No such file or directory", cmd[0])

        ex = FakeExecutor(no_svn)
        shared = SharedCacheStore(
            lambda wd: SvnClient("svn://x/c", wd, ex), staging_root=tmp_path / "shared-stage",
        )
        svc = InvalidationService(local, shared)

        with pytest.raises(ExternalToolError, match="无法执行svn checkout") as exc_info:
            svc.invalidate_all(Target.BOTH)
        assert isinstance(exc_info.value.__cause__, OSError)
        assert local.list_entries() == []
        assert shared.staging_path is None
