"""
Backend facade for pkengine.

Transport-agnostic entry points for a PackageKit-style host. Used by both
the CLI (directly) and the D-Bus service (one worker thread per call).

Every operation reports through a Job: package notifications, at most
one error, and exactly one finished signal. Each call opens its own
store, so concurrent calls share nothing but the database lock file.
"""

import errno
import logging
from contextlib import contextmanager
from enum import Flag
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Set

from .core import config
from .core.errors import EngineError, ErrorKind
from .core.filters import SUPPORTED_FILTERS, Filter, FilterSpec
from .core.job import Job, Status
from .core.package import split_package_id
from .core.query import PackageQuery
from .core.store import PackageStore
from .core.transaction import TransactionController, TransactionIntent

logger = logging.getLogger(__name__)


class TransactionFlag(Flag):
    """Flags accepted by the transaction operations."""
    NONE = 0
    ONLY_TRUSTED = 1
    SIMULATE = 2


class Backend:
    """Host-facing operations over a package store.

    Args:
        store_factory: Callable returning a fresh PackageStore per operation.
            Defaults to a LocalStore built from the initialized settings.
    """

    description = "Package query and transaction engine"
    author = "pkengine developers"

    def __init__(self, store_factory: Callable[[], PackageStore] = None):
        self._store_factory = store_factory
        self.settings: Optional[Dict] = None

    # =========================================================================
    # Lifecycle and capabilities
    # =========================================================================

    def initialize(self, conf: Mapping = None):
        """Load settings and make sure the package database exists.

        Args:
            conf: Optional overrides (base_dir, native_arch, root_dir,
                self_package)
        """
        self.settings = config.load_config(conf)
        if self._store_factory is None:
            from .core.local_store import LocalStore
            settings = self.settings
            self._store_factory = lambda: LocalStore.from_config(settings)
            # Creates or migrates the schema once, up front
            self._store_factory().close()
        logger.debug(f"Backend initialized with {self.settings}")

    def destroy(self):
        self._store_factory = None
        self.settings = None

    def get_filters(self) -> Filter:
        return SUPPORTED_FILTERS

    def get_groups(self) -> Set[str]:
        return {"unknown"}

    def supports_parallelization(self) -> bool:
        return False

    @contextmanager
    def _store(self):
        if self._store_factory is None:
            raise EngineError(ErrorKind.INTERNAL_ERROR, "Backend is not initialized")
        store = self._store_factory()
        try:
            yield store
        finally:
            store.close()

    # =========================================================================
    # Queries
    # =========================================================================

    def get_packages(self, job: Job, filters: Filter):
        with job.running(Status.QUERY), self._store() as store:
            PackageQuery(store).enumerate(FilterSpec(filters), job)

    def search_names(self, job: Job, filters: Filter, values: Iterable[str]):
        with job.running(Status.QUERY), self._store() as store:
            PackageQuery(store).enumerate(FilterSpec(filters).with_names(values), job)

    def search_details(self, job: Job, filters: Filter, values: Iterable[str]):
        with job.running(Status.QUERY), self._store() as store:
            PackageQuery(store).enumerate(FilterSpec(filters).with_details(values), job)

    def resolve(self, job: Job, filters: Filter, names: Iterable[str]):
        with job.running(Status.QUERY), self._store() as store:
            PackageQuery(store).resolve_into(names, FilterSpec(filters), job)

    def get_updates(self, job: Job, filters: Filter):
        with job.running(Status.QUERY), self._store() as store:
            PackageQuery(store).detect_updates(FilterSpec(filters), job)

    def refresh_cache(self, job: Job, force: bool = False):
        with job.running(Status.REFRESH_CACHE), self._store() as store:
            code = store.sync_repositories(force=force)
            if code == errno.ENOTSUP:
                raise EngineError(ErrorKind.SOURCE_UNAVAILABLE, "No repositories set up")
            if code != 0:
                raise EngineError(ErrorKind.SOURCE_UNAVAILABLE,
                                  "Failed to refresh repository indexes", code=code)

    # =========================================================================
    # Transactions
    # =========================================================================

    def _names(self, package_ids: Iterable[str]) -> List[str]:
        names = []
        for package_id in package_ids:
            try:
                names.append(split_package_id(package_id)[0])
            except ValueError as e:
                raise EngineError(ErrorKind.INVALID_PACKAGE_ID, str(e),
                                  package=package_id) from e
        return names

    def _run(self, job: Job, flags: TransactionFlag, intents: List[TransactionIntent],
             allow_dependents: bool = False):
        simulate = bool(flags & TransactionFlag.SIMULATE)
        with self._store() as store:
            controller = TransactionController(store, sink=job)
            job.set_status(Status.DEP_RESOLVE if simulate else Status.COMMIT)
            controller.run(intents, allow_dependents=allow_dependents, simulate=simulate)

    def install_packages(self, job: Job, flags: TransactionFlag, package_ids: Iterable[str]):
        with job.running(Status.SETUP):
            intents = [TransactionIntent.install(pid) for pid in package_ids]
            self._run(job, flags, intents)

    def remove_packages(self, job: Job, flags: TransactionFlag, package_ids: Iterable[str],
                        allow_deps: bool = False, autoremove: bool = False):
        with job.running(Status.SETUP):
            intents = [TransactionIntent.remove(name, autoremove)
                       for name in self._names(package_ids)]
            self._run(job, flags, intents, allow_dependents=allow_deps)

    def update_packages(self, job: Job, flags: TransactionFlag, package_ids: Iterable[str]):
        with job.running(Status.SETUP):
            intents = [TransactionIntent.update(name) for name in self._names(package_ids)]
            self._run(job, flags, intents)
