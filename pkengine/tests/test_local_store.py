"""Tests for the SQLite-backed package store"""

import errno

import pytest

from pkengine.core.database import PackageDatabase
from pkengine.core.filters import FilterSpec
from pkengine.core.index import index_path, write_index
from pkengine.core.lock import DatabaseLock
from pkengine.core.local_store import LocalStore
from pkengine.core.plan import PlanStep, StepType
from pkengine.core.query import PackageQuery
from pkengine.core.transaction import TransactionController, TransactionIntent

CURRENT = "https://repo.example.org/current"


@pytest.fixture
def store(tmp_path, raw):
    db = PackageDatabase(tmp_path / "pkgdb.sqlite")
    repo_id = db.add_repository(CURRENT)
    db.replace_index(repo_id, [
        ('foo', raw('foo-1.1_1', desc="Foo tool", run_depends=['libbar>=1.0_1'])),
        ('libbar', raw('libbar-1.2_1', desc="Bar library")),
        ('broken', raw('broken-1.0_1', run_depends=['>=2'])),
        ('pkengine', raw('pkengine-0.2_1')),
    ])
    db.add_installed(raw('foo-1.0_1', desc="Foo tool", run_depends=['libbar']),
                     repository=CURRENT)
    db.add_installed(raw('libbar-1.2_1'), repository=CURRENT, automatic=True)

    store = LocalStore(db, DatabaseLock(tmp_path / "pkgdb.lock"), native_arch="x86_64",
                       root_dir=tmp_path)
    yield store
    store.close()


class TestReadSide:
    """Tests for the store's query methods."""

    def test_installed_packages(self, store):
        assert [name for name, _ in store.installed_packages()] == ['foo', 'libbar']

    def test_repositories(self, store):
        assert store.repositories() == [CURRENT]
        store.db.enable_repository(CURRENT, False)
        assert store.repositories() == []

    def test_repository_packages(self, store):
        names = [name for name, _ in store.repository_packages(CURRENT)]
        assert names == ['foo', 'libbar', 'broken', 'pkengine']
        assert list(store.repository_packages("https://unknown.example/x")) == []

    def test_get_installed(self, store):
        assert store.get_installed('foo')['pkgver'] == 'foo-1.0_1'
        assert store.get_installed('foo-1.0_1')['pkgver'] == 'foo-1.0_1'
        assert store.get_installed('foo-1.1_1') is None
        assert store.is_installed('libbar')

    def test_get_available_prefers_highest(self, store, raw):
        mirror = store.db.add_repository("https://mirror.example.org/current")
        store.db.replace_index(mirror, [('foo', raw('foo-2.0_1'))])
        best = store.get_available('foo')
        assert best['pkgver'] == 'foo-2.0_1'
        assert best['repository'] == "https://mirror.example.org/current"

    def test_get_available_first_repository_on_tie(self, store, raw):
        mirror = store.db.add_repository("https://mirror.example.org/current")
        store.db.replace_index(mirror, [('foo', raw('foo-1.1_1'))])
        assert store.get_available('foo')['repository'] == CURRENT

    def test_get_available_by_pkgver(self, store):
        assert store.get_available('libbar-1.2_1')['pkgver'] == 'libbar-1.2_1'
        assert store.get_available('nothing') is None

    def test_compare_versions(self, store):
        assert store.compare_versions('foo-1.0_1', 'foo-1.1_1') == -1
        assert store.compare_versions('1.1_1', '1.0_1') == 1
        assert store.compare_versions('foo-1.0_1', '1.0_1') == 0

    def test_reverse_dependencies(self, store):
        assert store.reverse_dependencies('libbar') == ['foo']
        assert store.reverse_dependencies('foo') == []


class TestLock:
    """Tests for the store lock."""

    def test_lock_unlock(self, store, tmp_path):
        assert store.lock() == 0
        other = DatabaseLock(tmp_path / "pkgdb.lock")
        assert other.acquire() == errno.EAGAIN
        store.unlock()
        assert other.acquire() == 0
        other.release()


class TestStaging:
    """Tests for transaction_install/update/remove return codes."""

    def test_install(self, store):
        store.db.remove_installed('foo')
        assert store.transaction_install('foo-1.1_1') == 0

    def test_install_already_installed(self, store):
        assert store.transaction_install('libbar-1.2_1') == errno.EEXIST

    def test_install_missing(self, store):
        assert store.transaction_install('nothing-1.0_1') == errno.ENOENT

    def test_install_without_repositories(self, store):
        store.db.remove_repository(CURRENT)
        assert store.transaction_install('foo-1.1_1') == errno.ENOTSUP

    def test_install_invalid_dependencies(self, store):
        assert store.transaction_install('broken-1.0_1') == errno.ENXIO

    def test_install_blocked_by_self_update(self, store, raw):
        store.db.add_installed(raw('pkengine-0.1_1'))
        assert store.transaction_install('broken-1.0_1') == errno.EBUSY
        assert store.transaction_install('pkengine-0.2_1') == 0

    def test_update(self, store):
        assert store.transaction_update('foo') == 0

    def test_update_current(self, store):
        assert store.transaction_update('libbar') == errno.EEXIST

    def test_update_not_installed(self, store):
        assert store.transaction_update('broken') == errno.ENOENT

    def test_update_without_repositories(self, store):
        store.db.enable_repository(CURRENT, False)
        assert store.transaction_update('foo') == errno.ENOTSUP

    def test_remove(self, store):
        assert store.transaction_remove('foo') == 0

    def test_remove_not_installed(self, store):
        assert store.transaction_remove('broken') == errno.ENOENT

    def test_remove_with_dependents(self, store):
        assert store.transaction_remove('libbar') == errno.EEXIST

    def test_remove_after_dependents_staged(self, store):
        assert store.transaction_remove('foo') == 0
        assert store.transaction_remove('libbar') == 0

    def test_reset(self, store):
        store.transaction_remove('foo')
        store.transaction_reset()
        assert store.transaction_remove('libbar') == errno.EEXIST


class TestCommit:
    """Tests for applying a prepared plan."""

    def _prepared(self, store, steps):
        # stands in for transaction_prepare(), which needs libsolv
        store._steps = steps

    def test_commit_without_prepare(self, store):
        assert store.transaction_commit() == errno.EINVAL

    def test_commit_update_and_install(self, store, raw):
        store.transaction_update('foo')
        self._prepared(store, [
            PlanStep(StepType.UPDATE, 'foo', '1.1_1', 'x86_64', repository=CURRENT,
                     from_version='1.0_1', automatic=False,
                     raw=raw('foo-1.1_1', desc="Foo tool", run_depends=['libbaz'])),
            PlanStep(StepType.INSTALL, 'libbaz', '0.1_1', 'x86_64', repository=CURRENT,
                     raw=raw('libbaz-0.1_1')),
        ])

        assert store.transaction_commit() == 0
        assert store.get_installed('foo')['pkgver'] == 'foo-1.1_1'
        assert store.get_installed('libbaz')['automatic-install'] is True
        assert store.reverse_dependencies('libbaz') == ['foo']
        assert store.transaction_steps() == []

        entry = store.db.list_history(limit=1)[0]
        trans = store.db.get_transaction(entry['id'])
        assert trans['status'] == 'complete'
        assert trans['action'] == 'update'
        assert [(p['pkg_name'], p['reason']) for p in trans['packages']] == [
            ('foo', 'explicit'), ('libbaz', 'dependency'),
        ]
        assert trans['packages'][0]['previous_version'] == '1.0_1'

    def test_update_keeps_install_reason(self, store, raw):
        self._prepared(store, [
            PlanStep(StepType.UPDATE, 'libbar', '1.3_1', 'x86_64', repository=CURRENT,
                     automatic=False, raw=raw('libbar-1.3_1')),
        ])
        assert store.transaction_commit() == 0
        assert store.get_installed('libbar')['automatic-install'] is True

    def test_commit_remove(self, store):
        self._prepared(store, [
            PlanStep(StepType.REMOVE, 'foo', '1.0_1', 'x86_64', repository=CURRENT,
                     automatic=False),
        ])
        assert store.transaction_commit() == 0
        assert store.get_installed('foo') is None
        assert store.reverse_dependencies('libbar') == []

    def test_unpack_failure_rolls_back(self, tmp_path, raw):
        db = PackageDatabase(tmp_path / "pkgdb.sqlite")
        db.add_repository(CURRENT)

        def unpack(step):
            if step.name == 'second':
                raise OSError(errno.ENOSPC, "No space left on device")

        store = LocalStore(db, DatabaseLock(tmp_path / "pkgdb.lock"), "x86_64",
                           unpack=unpack)
        self._prepared(store, [
            PlanStep(StepType.INSTALL, 'first', '1.0_1', 'x86_64', raw=raw('first-1.0_1')),
            PlanStep(StepType.INSTALL, 'second', '1.0_1', 'x86_64', raw=raw('second-1.0_1')),
        ])
        try:
            assert store.transaction_commit() == errno.EIO
            assert store.get_installed('first') is None
            trans = db.get_transaction(db.list_history(limit=1)[0]['id'])
            assert trans['status'] == 'interrupted'
            assert trans['packages'] == []
        finally:
            store.close()

    def test_prepare_empty(self, store):
        pytest.importorskip("solv")
        assert store.transaction_prepare() == 0
        assert store.transaction_steps() == []

    def test_update_to_higher_base_version(self, tmp_path, raw):
        pytest.importorskip("solv")
        db = PackageDatabase(tmp_path / "pkgdb.sqlite")
        repo_id = db.add_repository(CURRENT)
        db.replace_index(repo_id, [('foo', raw('foo-1.0.1_1'))])
        db.add_installed(raw('foo-1.0_2'), repository=CURRENT)
        store = LocalStore(db, DatabaseLock(tmp_path / "pkgdb.lock"), "x86_64",
                           root_dir=tmp_path)
        try:
            updates = list(PackageQuery(store).iter_updates(FilterSpec()))
            assert [u.package_id for u in updates] == ["foo;1.0.1_1;x86_64;current"]

            steps = TransactionController(store).run([TransactionIntent.update('foo')])
            assert [(s.action, s.version) for s in steps] == [(StepType.UPDATE, '1.0.1_1')]
            assert store.get_installed('foo')['pkgver'] == 'foo-1.0.1_1'
        finally:
            store.close()


class TestSync:
    """Tests for sync_repositories()."""

    def test_no_repositories(self, store):
        store.db.remove_repository(CURRENT)
        assert store.sync_repositories() == errno.ENOTSUP

    def test_remote_repository_fails(self, store):
        assert store.sync_repositories() == errno.ENOENT

    def test_local_repository(self, store, tmp_path, raw):
        store.db.remove_repository(CURRENT)
        local = tmp_path / "local"
        write_index(index_path(str(local), "x86_64"), {'new': raw('new-1.0_1')})
        store.db.add_repository(str(local))

        assert store.sync_repositories() == 0
        assert store.get_available('new')['pkgver'] == 'new-1.0_1'
        assert store.sync_repositories(force=True) == 0
