r"""
Transaction controller.

Drives one install/remove/update transaction against the store:

    IDLE -> LOCKED -> STAGED -> PREPARED -> COMMITTED
              \          \          \
               +----------+----------+--> ABORTED

Once the lock is taken, release() runs exactly once whatever happens.
Store primitives return errno values; this module maps them to
ErrorKind and raises TransactionError.
"""

import errno
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ErrorKind, LockError, TransactionError
from .job import Info
from .package import PackageIdentity, build_package_id, format_repository
from .plan import PlanStep, StepType
from .store import PackageStore

logger = logging.getLogger(__name__)


class TransactionState(Enum):
    IDLE = "idle"
    LOCKED = "locked"
    STAGED = "staged"
    PREPARED = "prepared"
    COMMITTED = "committed"
    ABORTED = "aborted"


class IntentType(Enum):
    INSTALL = "install"
    REMOVE = "remove"
    UPDATE = "update"


@dataclass(frozen=True)
class TransactionIntent:
    """One requested action.

    For INSTALL the target is a package id (the exact version is
    installed); for REMOVE and UPDATE it is a package name.
    """
    kind: IntentType
    target: str
    autoremove: bool = False

    @classmethod
    def install(cls, package_id: str) -> 'TransactionIntent':
        return cls(IntentType.INSTALL, package_id)

    @classmethod
    def remove(cls, name: str, autoremove: bool = False) -> 'TransactionIntent':
        return cls(IntentType.REMOVE, name, autoremove)

    @classmethod
    def update(cls, name: str) -> 'TransactionIntent':
        return cls(IntentType.UPDATE, name)


# errno -> (kind, message template); "{pkg}" and "{tool}" are filled in
INSTALL_ERRORS: Dict[int, Tuple[ErrorKind, str]] = {
    errno.EBUSY: (ErrorKind.SELF_UPDATE_REQUIRED, "The {tool} package must be updated first"),
    errno.EEXIST: (ErrorKind.ALREADY_SATISFIED, "{pkg} is already installed"),
    errno.ENOENT: (ErrorKind.NOT_FOUND, "{pkg} not found in repository pool"),
    errno.ENOTSUP: (ErrorKind.SOURCE_UNAVAILABLE, "No repositories set up"),
    errno.ENXIO: (ErrorKind.DEPENDENCY_ERROR, "{pkg} has invalid dependencies"),
}

UPDATE_ERRORS: Dict[int, Tuple[ErrorKind, str]] = {
    errno.EBUSY: (ErrorKind.SELF_UPDATE_REQUIRED, "The {tool} package must be updated first"),
    errno.ENOENT: (ErrorKind.NOT_FOUND, "{pkg} not found in repository pool"),
    errno.ENOTSUP: (ErrorKind.SOURCE_UNAVAILABLE, "No repositories are available"),
    errno.ENXIO: (ErrorKind.DEPENDENCY_ERROR, "{pkg} has invalid dependencies"),
}

REMOVE_ERRORS: Dict[int, Tuple[ErrorKind, str]] = {
    errno.EEXIST: (ErrorKind.DEPENDENCY_ERROR, "{pkg} is a dependency of another package"),
    errno.ENOENT: (ErrorKind.NOT_INSTALLED, "{pkg} is not installed"),
}

PREPARE_ERRORS: Dict[int, Tuple[ErrorKind, str]] = {
    errno.EAGAIN: (ErrorKind.CONFLICT_ERROR, "Packages conflict"),
    errno.EINVAL: (ErrorKind.INTERNAL_ERROR, "An internal error occurred"),
    errno.ENXIO: (ErrorKind.INTERNAL_ERROR, "An internal error occurred"),
    errno.ENODEV: (ErrorKind.DEPENDENCY_ERROR, "Could not satisfy dependencies"),
    errno.ENOEXEC: (ErrorKind.DEPENDENCY_ERROR, "Could not satisfy dependencies"),
    errno.ENOSPC: (ErrorKind.RESOURCE_EXHAUSTED, "No space left on root filesystem"),
}

_STEP_INFO = {
    StepType.INSTALL: Info.INSTALLING,
    StepType.REINSTALL: Info.INSTALLING,
    StepType.REMOVE: Info.REMOVING,
    StepType.UPDATE: Info.UPDATING,
    StepType.DOWNGRADE: Info.UPDATING,
}


class TransactionController:
    """Run one transaction against a store.

    Args:
        store: Package store (shared handle, lock owner)
        sink: Optional Job receiving plan steps and lock state
    """

    def __init__(self, store: PackageStore, sink=None):
        self.store = store
        self.sink = sink
        self.state = TransactionState.IDLE
        self.staged: List[Tuple[IntentType, str]] = []
        self._removing: set = set()
        self._locked = False

    # =========================================================================
    # Helpers
    # =========================================================================

    def _fail(self, table: Dict[int, Tuple[ErrorKind, str]], code: int,
              package: Optional[str], fallback: str) -> TransactionError:
        kind, template = table.get(code, (ErrorKind.UNKNOWN, fallback))
        message = template.format(pkg=package, tool=self.store.self_package)
        if kind is ErrorKind.UNKNOWN:
            message = f"{message} (code {code}: {os.strerror(code)})"
        self.state = TransactionState.ABORTED
        logger.info(f"Transaction aborted: {message}")
        return TransactionError(kind, message, package=package, code=code)

    def _require(self, *states: TransactionState):
        if self.state not in states:
            raise TransactionError(
                ErrorKind.INTERNAL_ERROR,
                f"Invalid transaction state {self.state.value}"
            )

    # =========================================================================
    # State machine
    # =========================================================================

    def acquire(self):
        """Take the exclusive database lock.

        Raises:
            LockError: If another process holds the lock
        """
        self._require(TransactionState.IDLE)
        code = self.store.lock()
        if code != 0:
            raise LockError(
                f"Failed to lock package database: {os.strerror(code)}", code=code
            )
        self._locked = True
        self.state = TransactionState.LOCKED
        if self.sink is not None:
            self.sink.set_locked(True)
        logger.debug("Package database locked")

    def stage(self, intents: Iterable[TransactionIntent], allow_dependents: bool = False):
        """Stage intents in order; the first failure aborts the whole batch.

        Args:
            intents: Intents to stage
            allow_dependents: For removals, also remove every package that
                (transitively) depends on the target, dependents first
        """
        self._require(TransactionState.LOCKED, TransactionState.STAGED)
        for intent in intents:
            if intent.kind is IntentType.INSTALL:
                self._stage_install(intent)
            elif intent.kind is IntentType.UPDATE:
                self._stage_update(intent)
            elif allow_dependents:
                for name in self._removal_order(intent.target):
                    self._stage_remove(name, intent.autoremove, with_dependents=True)
            else:
                self._stage_remove(intent.target, intent.autoremove, with_dependents=False)
        self.state = TransactionState.STAGED

    def _stage_install(self, intent: TransactionIntent):
        try:
            identity = PackageIdentity.from_package_id(intent.target)
        except ValueError as e:
            self.state = TransactionState.ABORTED
            raise TransactionError(ErrorKind.INVALID_PACKAGE_ID, str(e),
                                   package=intent.target) from e
        pkgver = identity.pkgver
        code = self.store.transaction_install(pkgver)
        if code != 0:
            raise self._fail(INSTALL_ERRORS, code, pkgver,
                             "{pkg} failed to be queued for installation")
        self.staged.append((IntentType.INSTALL, pkgver))

    def _stage_update(self, intent: TransactionIntent):
        name = intent.target
        code = self.store.transaction_update(name)
        if code not in (0, errno.EEXIST):
            raise self._fail(UPDATE_ERRORS, code, name,
                             "{pkg} failed to be queued to update")
        if code == 0:
            self.staged.append((IntentType.UPDATE, name))
        else:
            logger.debug(f"{name} is already up to date")

    def _stage_remove(self, name: str, autoremove: bool, with_dependents: bool):
        if name in self._removing:
            return
        code = self.store.transaction_remove(name, autoremove)
        if code != 0:
            table = REMOVE_ERRORS
            if with_dependents:
                # dependents were staged first, EEXIST is not expected here
                table = {errno.ENOENT: REMOVE_ERRORS[errno.ENOENT]}
            raise self._fail(table, code, name, "{pkg} could not be queued for removal")
        self._removing.add(name)
        self.staged.append((IntentType.REMOVE, name))

    def _removal_order(self, name: str) -> List[str]:
        """Reverse-dependency closure of name, dependents before dependencies.

        Iterative depth-first walk in post-order. Packages already staged
        for removal are not walked again.

        Raises:
            TransactionError: On a dependency cycle
        """
        order: List[str] = []
        done = set(self._removing)
        if name in done:
            return order

        path = [name]
        stack = [(name, iter(self.store.reverse_dependencies(name)))]
        while stack:
            pkg, dependents = stack[-1]
            dependent = next(dependents, None)
            if dependent is None:
                stack.pop()
                path.pop()
                if pkg not in done:
                    done.add(pkg)
                    order.append(pkg)
                continue
            if dependent in path:
                cycle = ' -> '.join(path[path.index(dependent):] + [dependent])
                self.state = TransactionState.ABORTED
                raise TransactionError(
                    ErrorKind.DEPENDENCY_ERROR,
                    f"Dependency cycle while removing {name}: {cycle}",
                    package=name,
                )
            if dependent in done:
                continue
            path.append(dependent)
            stack.append((dependent, iter(self.store.reverse_dependencies(dependent))))
        return order

    def prepare(self):
        """Resolve the staged set into a dependency-complete plan."""
        self._require(TransactionState.STAGED)
        code = self.store.transaction_prepare()
        if code != 0:
            raise self._fail(PREPARE_ERRORS, code, None, "Failed to prepare transaction")
        self.state = TransactionState.PREPARED

    def plan(self) -> List[PlanStep]:
        self._require(TransactionState.PREPARED, TransactionState.COMMITTED)
        return list(self.store.transaction_steps())

    def emit_plan(self):
        """Send each plan step to the sink."""
        if self.sink is None:
            return
        for step in self.plan():
            package_id = build_package_id(step.name, step.version, step.arch,
                                          format_repository(step.repository))
            summary = (step.raw or {}).get('short_desc', '')
            self.sink.package(_STEP_INFO[step.action], package_id, summary)

    def commit(self):
        """Execute the prepared plan."""
        self._require(TransactionState.PREPARED)
        code = self.store.transaction_commit()
        if code != 0:
            self.state = TransactionState.ABORTED
            raise TransactionError(
                ErrorKind.TRANSACTION_ERROR,
                f"Failed to commit transaction: {os.strerror(code)}",
                code=code,
            )
        self.state = TransactionState.COMMITTED

    def release(self):
        """Drop staged state and unlock. Does nothing if not locked."""
        if not self._locked:
            return
        self._locked = False
        try:
            self.store.transaction_reset()
        finally:
            self.store.unlock()
            if self.sink is not None:
                self.sink.set_locked(False)
            logger.debug("Package database unlocked")

    def run(self, intents: Iterable[TransactionIntent], allow_dependents: bool = False,
            simulate: bool = False) -> List[PlanStep]:
        """Acquire, stage, prepare, commit, always release.

        Args:
            intents: Intents to apply
            allow_dependents: See stage()
            simulate: Prepare and report the plan without committing

        Returns:
            The executed (or simulated) plan
        """
        self.acquire()
        try:
            self.stage(intents, allow_dependents=allow_dependents)
            self.prepare()
            steps = self.plan()
            if not simulate:
                self.commit()
            self.emit_plan()
            return steps
        except Exception:
            if self.state is not TransactionState.COMMITTED:
                self.state = TransactionState.ABORTED
            raise
        finally:
            self.release()
