"""
Read-only package queries: enumerate, resolve, detect updates.

All three walk the store lazily and hand out PackageResult tuples; the
sink-taking variants forward them to a Job. Queries never take the
database lock and never fail on a single bad record.
"""

import logging
from typing import Iterable, Iterator, Mapping, NamedTuple, Optional

from .filters import FilterSpec, admits
from .job import Info
from .package import (
    PackageIdentity, PackageRecord, make_record, normalize,
)
from .store import PackageStore

logger = logging.getLogger(__name__)


class PackageResult(NamedTuple):
    identity: PackageIdentity
    info: Info
    summary: str

    @property
    def package_id(self) -> str:
        return self.identity.package_id


def _emit(results: Iterable[PackageResult], sink) -> int:
    count = 0
    for result in results:
        sink.package(result.info, result.package_id, result.summary)
        count += 1
    return count


class PackageQuery:
    """Query operations over one store handle.

    Args:
        store: Package store to read from
    """

    def __init__(self, store: PackageStore):
        self.store = store

    @property
    def native_arch(self) -> str:
        return self.store.native_arch

    def _view(self, key: Optional[str], raw, repository: Optional[str] = None
              ) -> Optional[PackageRecord]:
        """Normalize a raw record, or None if it is unusable."""
        pkgver = raw.get('pkgver') if isinstance(raw, Mapping) else None
        if not pkgver or not isinstance(pkgver, str):
            logger.debug(f"Skipping malformed record {key!r}")
            return None
        identity = normalize(raw, known_name=key, repository=repository)
        return make_record(raw, identity)

    # =========================================================================
    # Enumerate
    # =========================================================================

    def iter_packages(self, spec: FilterSpec) -> Iterator[PackageResult]:
        """Walk installed then available packages, deduplicated.

        Installed results always come before available ones. An available
        package whose exact pkgver is installed is hidden unless INSTALLED
        was asked for.
        """
        seen = set()

        def first_seen(record: PackageRecord) -> bool:
            package_id = record.identity.package_id
            if package_id in seen:
                return False
            seen.add(package_id)
            return True

        if spec.wants_installed:
            for key, raw in self.store.installed_packages():
                record = self._view(key, raw)
                if record is None or not admits(record, spec, self.native_arch):
                    continue
                if first_seen(record):
                    yield PackageResult(record.identity, Info.INSTALLED, record.summary)

        if spec.wants_available:
            hide_installed = not spec.has_installed
            for uri in self.store.repositories():
                for key, raw in self.store.repository_packages(uri):
                    record = self._view(key, raw, repository=uri)
                    if record is None:
                        continue
                    if not admits(record, spec, self.native_arch):
                        continue
                    if hide_installed and self.store.is_installed(raw['pkgver']):
                        continue
                    if first_seen(record):
                        yield PackageResult(record.identity, Info.AVAILABLE, record.summary)

    def enumerate(self, spec: FilterSpec, sink) -> int:
        """Emit every matching package to sink. Returns the count."""
        return _emit(self.iter_packages(spec), sink)

    # =========================================================================
    # Resolve
    # =========================================================================

    def resolve(self, names: Iterable[str], spec: FilterSpec) -> Iterator[PackageResult]:
        """Look up names directly, installed state first.

        Unknown names are skipped. Search tokens in spec are not applied.
        """
        spec = spec.without_search()
        wants_installed = spec.has_installed
        wants_available = spec.has_not_installed

        for name in names:
            installed = self.store.is_installed(name)

            if wants_installed or (not wants_available and installed):
                info = Info.INSTALLED
                raw = self.store.get_installed(name)
            else:
                info = Info.AVAILABLE
                raw = self.store.get_available(name)

            if raw is None:
                continue

            record = self._view(None, raw)
            if record is None:
                continue
            if admits(record, spec, self.native_arch):
                yield PackageResult(record.identity, info, record.summary)

    def resolve_into(self, names: Iterable[str], spec: FilterSpec, sink) -> int:
        return _emit(self.resolve(names, spec), sink)

    # =========================================================================
    # Updates
    # =========================================================================

    def iter_updates(self, spec: FilterSpec) -> Iterator[PackageResult]:
        """Installed packages with a strictly newer repository version.

        The candidate keeps the installed package's origin label, not the
        repository it would be fetched from.
        """
        spec = spec.without_search()

        for key, raw in self.store.installed_packages():
            installed = self._view(key, raw)
            if installed is None:
                continue

            remote = self.store.get_available(key)
            if remote is None:
                continue
            candidate = self._view(key, remote)
            if candidate is None:
                continue

            if self.store.compare_versions(installed.identity.version,
                                           candidate.identity.version) != -1:
                continue

            identity = PackageIdentity(
                name=candidate.identity.name,
                version=candidate.identity.version,
                arch=candidate.identity.arch,
                repository=installed.identity.repository,
            )
            record = make_record(remote, identity)
            if admits(record, spec, self.native_arch):
                yield PackageResult(identity, Info.NORMAL, record.summary)

    def detect_updates(self, spec: FilterSpec, sink) -> int:
        return _emit(self.iter_updates(spec), sink)

