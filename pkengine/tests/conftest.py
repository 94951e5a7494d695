"""Shared fixtures: an in-memory PackageStore and raw record builder."""

from typing import Dict, List, Optional

import pytest

from pkengine.core.store import PackageStore
from pkengine.core.version import compare_versions, pkgver_split


def raw_record(pkgver: str, arch: str = "x86_64", desc: str = "",
               repository: Optional[str] = None, **extra) -> dict:
    """Build a raw store record."""
    raw = {'pkgver': pkgver, 'architecture': arch, 'short_desc': desc}
    if repository is not None:
        raw['repository'] = repository
    raw.update(extra)
    return raw


class FakeStore(PackageStore):
    """PackageStore over plain dicts, recording every mutating call.

    Args:
        installed: name -> raw record
        repos: list of (uri, {name: raw record}) in pool order
        revdeps: name -> names of direct dependents
    """

    def __init__(self, installed: Dict[str, dict] = None, repos: List = None,
                 revdeps: Dict[str, List[str]] = None, native_arch: str = "x86_64"):
        self.installed = dict(installed or {})
        self.repos = list(repos or [])
        self.revdeps = dict(revdeps or {})
        self.native_arch = native_arch

        self.lock_code = 0
        self.install_codes: Dict[str, int] = {}
        self.update_codes: Dict[str, int] = {}
        self.remove_codes: Dict[str, int] = {}
        self.prepare_code = 0
        self.commit_code = 0
        self.sync_code = 0
        self.steps = []

        self.calls: List[tuple] = []
        self.staged: List[tuple] = []
        self.committed: List[tuple] = []
        self.lock_calls = 0
        self.unlock_calls = 0
        self.reset_calls = 0
        self.closed = False

    # read side

    def installed_packages(self):
        return iter(list(self.installed.items()))

    def repositories(self):
        return [uri for uri, _ in self.repos]

    def repository_packages(self, uri):
        for repo_uri, packages in self.repos:
            if repo_uri == uri:
                return iter(list(packages.items()))
        return iter(())

    def get_installed(self, pattern):
        if pattern in self.installed:
            return self.installed[pattern]
        for raw in self.installed.values():
            if isinstance(raw, dict) and raw.get('pkgver') == pattern:
                return raw
        return None

    def get_available(self, pattern):
        best = None
        for uri, packages in self.repos:
            raw = packages.get(pattern)
            if raw is None:
                raw = next((r for r in packages.values()
                            if isinstance(r, dict) and r.get('pkgver') == pattern), None)
            if not isinstance(raw, dict):
                continue
            if best is None or compare_versions(pkgver_split(raw['pkgver'])[1],
                                                pkgver_split(best['pkgver'])[1]) > 0:
                best = dict(raw, repository=uri)
        return best

    def compare_versions(self, a, b):
        return compare_versions(a, b)

    def reverse_dependencies(self, name):
        return list(self.revdeps.get(name, []))

    # lock

    def lock(self):
        self.lock_calls += 1
        return self.lock_code

    def unlock(self):
        self.unlock_calls += 1

    # transaction primitives

    def transaction_install(self, pkgver):
        self.calls.append(('install', pkgver))
        code = self.install_codes.get(pkgver, 0)
        if code == 0:
            self.staged.append(('install', pkgver))
        return code

    def transaction_update(self, name):
        self.calls.append(('update', name))
        code = self.update_codes.get(name, 0)
        if code == 0:
            self.staged.append(('update', name))
        return code

    def transaction_remove(self, name, recursive=False):
        self.calls.append(('remove', name, recursive))
        code = self.remove_codes.get(name, 0)
        if code == 0:
            self.staged.append(('remove', name))
        return code

    def transaction_prepare(self):
        self.calls.append(('prepare',))
        return self.prepare_code

    def transaction_steps(self):
        return list(self.steps)

    def transaction_commit(self):
        self.calls.append(('commit',))
        if self.commit_code == 0:
            self.committed.extend(self.staged)
        return self.commit_code

    def transaction_reset(self):
        self.reset_calls += 1
        self.staged = []

    def sync_repositories(self, force=False):
        self.calls.append(('sync', force))
        return self.sync_code

    def close(self):
        self.closed = True


@pytest.fixture
def scenario_store():
    """Installed {A-1.0}, one repository with {A-1.0, B-2.0}."""
    return FakeStore(
        installed={'A': raw_record('A-1.0', desc='Package A',
                                   repository='https://repo.example.org/current')},
        repos=[('https://repo.example.org/current', {
            'A': raw_record('A-1.0', desc='Package A'),
            'B': raw_record('B-2.0', desc='Package B'),
        })],
    )


@pytest.fixture
def make_store():
    """Factory for FakeStore instances."""
    return FakeStore


@pytest.fixture
def raw():
    """Factory for raw store records."""
    return raw_record
