"""
Store boundary for pkengine.

The query and transaction layers are written against PackageStore and
never touch SQLite, the lock file or the solver directly. LocalStore
(local_store.py) is the implementation used in production; tests use
in-memory fakes.

Conventions:
    - Raw records are plain mappings (see package.py).
    - Mutating primitives return 0 on success or an errno value, like
      the C library calls they model. The transaction controller maps
      those codes to ErrorKind values.
"""

from typing import Iterator, List, Mapping, Optional, Tuple

RawRecord = Mapping


class PackageStore:
    """Collaborator interface over the package database and repository pool."""

    #: Architecture of the running system, compared by ARCH/NOT_ARCH filters
    native_arch: str = ""

    #: Name of the package providing the package tooling itself
    self_package: str = "pkengine"

    # -- read side ---------------------------------------------------------

    def installed_packages(self) -> Iterator[Tuple[str, RawRecord]]:
        """Iterate (name, raw) over the installed set."""
        raise NotImplementedError

    def repositories(self) -> List[str]:
        """Return the URIs of the repository pool, in pool order."""
        raise NotImplementedError

    def repository_packages(self, uri: str) -> Iterator[Tuple[str, RawRecord]]:
        """Iterate (key, raw) over one repository index."""
        raise NotImplementedError

    def get_installed(self, pattern: str) -> Optional[RawRecord]:
        """Look up an installed package by name or pkgver."""
        raise NotImplementedError

    def get_available(self, pattern: str) -> Optional[RawRecord]:
        """Look up the best repository package by name or pkgver."""
        raise NotImplementedError

    def is_installed(self, pattern: str) -> bool:
        return self.get_installed(pattern) is not None

    def compare_versions(self, a: str, b: str) -> int:
        """Return -1, 0 or 1 like cmp(a, b) under package version ordering."""
        raise NotImplementedError

    def reverse_dependencies(self, name: str) -> List[str]:
        """Names of installed packages that directly depend on name."""
        raise NotImplementedError

    # -- lock --------------------------------------------------------------

    def lock(self) -> int:
        raise NotImplementedError

    def unlock(self):
        raise NotImplementedError

    # -- transaction primitives --------------------------------------------

    def transaction_install(self, pkgver: str) -> int:
        raise NotImplementedError

    def transaction_update(self, name: str) -> int:
        raise NotImplementedError

    def transaction_remove(self, name: str, recursive: bool = False) -> int:
        raise NotImplementedError

    def transaction_prepare(self) -> int:
        raise NotImplementedError

    def transaction_steps(self) -> list:
        """Return the prepared plan as a list of PlanStep."""
        raise NotImplementedError

    def transaction_commit(self) -> int:
        raise NotImplementedError

    def transaction_reset(self):
        """Discard everything staged or prepared."""
        raise NotImplementedError

    def sync_repositories(self, force: bool = False) -> int:
        """Reload every repository index. ENOTSUP when none is configured."""
        raise NotImplementedError

    def close(self):
        """Release resources held by the store."""
