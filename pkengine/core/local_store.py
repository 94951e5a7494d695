"""
LocalStore: PackageStore over the SQLite database, the lock file and
the libsolv planner.

Staging validates each request against the database and queues it;
transaction_prepare() hands the queue to the planner; transaction_commit()
applies the plan to the installed set in one SQLite transaction and
records it in the history.
"""

import errno
import logging
import sqlite3
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from . import config
from .database import PackageDatabase
from .index import sync_all_repositories
from .lock import DatabaseLock
from .plan import PlanStep, StagedJob, StepType
from .store import PackageStore
from .version import compare_versions, parse_dependency, pkgver_split

logger = logging.getLogger(__name__)


class LocalStore(PackageStore):
    """Package store backed by a local database.

    Args:
        db: Open PackageDatabase
        lock: DatabaseLock guarding transactions
        native_arch: Architecture of the running system
        root_dir: Filesystem root the packages are installed under
        self_package: Package that must be current before other installs
        unpack: Optional callback(step) run for each plan step on commit
    """

    def __init__(self, db: PackageDatabase, lock: DatabaseLock, native_arch: str,
                 root_dir: Path = Path("/"), self_package: str = config.DEFAULT_SELF_PACKAGE,
                 unpack: Callable[[PlanStep], None] = None):
        self.db = db
        self._lock = lock
        self.native_arch = native_arch
        self.root_dir = Path(root_dir)
        self.self_package = self_package
        self.unpack = unpack
        self._staged: List[StagedJob] = []
        self._steps: Optional[List[PlanStep]] = None

    @classmethod
    def from_config(cls, settings: Dict = None) -> 'LocalStore':
        """Open the store described by load_config() settings."""
        settings = settings or config.load_config()
        db = PackageDatabase(settings['db_path'])
        return cls(db, DatabaseLock(settings['lock_path']),
                   native_arch=settings['native_arch'],
                   root_dir=settings['root_dir'],
                   self_package=settings['self_package'])

    def close(self):
        self._lock.release()
        self.db.close()

    # =========================================================================
    # Read side
    # =========================================================================

    def installed_packages(self) -> Iterator[Tuple[str, dict]]:
        return self.db.iter_installed()

    def repositories(self) -> List[str]:
        return [r['uri'] for r in self.db.list_repositories(enabled_only=True)]

    def repository_packages(self, uri: str) -> Iterator[Tuple[str, dict]]:
        repo = self.db.get_repository(uri)
        if not repo:
            return iter(())
        return self.db.iter_index(repo['id'])

    def get_installed(self, pattern: str) -> Optional[dict]:
        raw = self.db.get_installed(name=pattern)
        if raw is None and pkgver_split(pattern)[1]:
            raw = self.db.get_installed(pkgver=pattern)
        return raw

    def get_available(self, pattern: str) -> Optional[dict]:
        """Best candidate: highest version, first repository on ties."""
        candidates = self.db.find_available(name=pattern)
        if not candidates:
            candidates = self.db.find_available(pkgver=pattern)
        best = None
        for raw in candidates:
            if best is None or compare_versions(
                    pkgver_split(raw['pkgver'])[1], pkgver_split(best['pkgver'])[1]) > 0:
                best = raw
        return best

    def compare_versions(self, a: str, b: str) -> int:
        return compare_versions(pkgver_split(a)[1] or a, pkgver_split(b)[1] or b)

    def reverse_dependencies(self, name: str) -> List[str]:
        return self.db.installed_dependents(name)

    # =========================================================================
    # Lock
    # =========================================================================

    def lock(self) -> int:
        return self._lock.acquire()

    def unlock(self):
        self._lock.release()

    # =========================================================================
    # Staging
    # =========================================================================

    def _staged_removals(self) -> set:
        return {j.target for j in self._staged if j.action is StepType.REMOVE}

    def _has_invalid_deps(self, raw: dict) -> bool:
        return any(parse_dependency(cap) is None for cap in raw.get('run_depends') or ())

    def _self_update_pending(self, name: str) -> bool:
        """True when the tooling package has an update and name is not it."""
        if name == self.self_package:
            return False
        installed = self.db.get_installed(name=self.self_package)
        if installed is None:
            return False
        candidate = self.get_available(self.self_package)
        return candidate is not None and self.compare_versions(
            installed['pkgver'], candidate['pkgver']) < 0

    def transaction_install(self, pkgver: str) -> int:
        if not self.repositories():
            return errno.ENOTSUP
        if self.db.get_installed(pkgver=pkgver) is not None:
            return errno.EEXIST
        candidates = self.db.find_available(pkgver=pkgver)
        if not candidates:
            return errno.ENOENT
        name = pkgver_split(pkgver)[0]
        if self._self_update_pending(name):
            return errno.EBUSY
        if self._has_invalid_deps(candidates[0]):
            return errno.ENXIO
        logger.debug(f"Queued {pkgver} for installation")
        self._staged.append(StagedJob(StepType.INSTALL, pkgver))
        return 0

    def transaction_update(self, name: str) -> int:
        if not self.repositories():
            return errno.ENOTSUP
        installed = self.db.get_installed(name=name)
        candidate = self.get_available(name)
        if installed is None or candidate is None:
            return errno.ENOENT
        if self.compare_versions(installed['pkgver'], candidate['pkgver']) >= 0:
            return errno.EEXIST
        if self._self_update_pending(name):
            return errno.EBUSY
        if self._has_invalid_deps(candidate):
            return errno.ENXIO
        logger.debug(f"Queued {name} for update to {candidate['pkgver']}")
        self._staged.append(StagedJob(StepType.UPDATE, name))
        return 0

    def transaction_remove(self, name: str, recursive: bool = False) -> int:
        if self.db.get_installed(name=name) is None:
            return errno.ENOENT
        pending = self._staged_removals()
        blockers = [d for d in self.db.installed_dependents(name) if d not in pending]
        if blockers:
            logger.info(f"{name} is required by: {', '.join(blockers)}")
            return errno.EEXIST
        logger.debug(f"Queued {name} for removal")
        self._staged.append(StagedJob(StepType.REMOVE, name, cleandeps=recursive))
        return 0

    # =========================================================================
    # Prepare / commit
    # =========================================================================

    def transaction_prepare(self) -> int:
        from .solver import TransactionPlanner

        planner = TransactionPlanner(self.db, self.native_arch, self.root_dir)
        code, steps = planner.plan(self._staged)
        if code != 0:
            self._steps = None
            return code
        self._steps = steps
        return 0

    def transaction_steps(self) -> List[PlanStep]:
        return list(self._steps or [])

    def transaction_commit(self) -> int:
        if self._steps is None:
            return errno.EINVAL

        actions = {j.action.value for j in self._staged} or {'install'}
        history_id = self.db.begin_transaction(
            '/'.join(sorted(actions)),
            command=' '.join(j.target for j in self._staged),
        )
        try:
            with self.db.conn:
                for step in self._steps:
                    self._apply(step, history_id)
        except (sqlite3.Error, OSError) as e:
            logger.error(f"Commit failed: {e}")
            self.db.abort_transaction(history_id)
            return errno.EIO

        self.db.complete_transaction(history_id)
        logger.info(f"Committed {len(self._steps)} package actions")
        self._staged = []
        self._steps = None
        return 0

    def _apply(self, step: PlanStep, history_id: int):
        if self.unpack is not None:
            self.unpack(step)

        previous = self.db.get_installed(name=step.name)
        if step.action is StepType.REMOVE:
            self.db.remove_installed(step.name, commit=False)
        else:
            automatic = step.automatic
            if previous is not None and step.action is not StepType.INSTALL:
                # Updates keep the original install reason
                automatic = previous.get('automatic-install', automatic)
            self.db.add_installed(step.raw or {}, repository=step.repository,
                                  automatic=automatic, commit=False)

        self.db.record_package(
            history_id, step.pkgver, step.name, step.action.value,
            'dependency' if step.automatic else 'explicit',
            previous_version=pkgver_split(previous['pkgver'])[1] if previous else None,
        )

    def transaction_reset(self):
        self._staged = []
        self._steps = None

    # =========================================================================
    # Repositories
    # =========================================================================

    def sync_repositories(self, force: bool = False) -> int:
        if not self.repositories():
            return errno.ENOTSUP
        code = 0
        for uri, result in sync_all_repositories(self.db, self.native_arch, force=force):
            if not result.success:
                logger.error(f"Failed to refresh {uri}: {result.error}")
                code = code or errno.ENOENT
        return code
