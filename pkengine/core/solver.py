"""
Transaction planner using libsolv

Builds a libsolv Pool from the package database (installed set as
"@System", one repo per enabled repository in pool order), turns staged
jobs into solver jobs and returns an ordered plan.

Failures are reported as errno values, matching the store convention:
    EAGAIN  - conflicting packages
    ENODEV  - unsatisfiable dependencies
    ENXIO   - a staged job does not match anything in the pool
    ENOSPC  - not enough free space under the root directory
"""

import errno
import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import solv

from .plan import PlanStep, StagedJob, StepType
from .version import from_evr, parse_dependency, pkgver_split, to_evr

logger = logging.getLogger(__name__)

# Map dependency operators to libsolv flags
OP_FLAGS = {
    '>=': solv.REL_GT | solv.REL_EQ,
    '<=': solv.REL_LT | solv.REL_EQ,
    '=': solv.REL_EQ,
    '>': solv.REL_GT,
    '<': solv.REL_LT,
}

STEP_TYPES = {
    solv.Transaction.SOLVER_TRANSACTION_INSTALL: StepType.INSTALL,
    solv.Transaction.SOLVER_TRANSACTION_ERASE: StepType.REMOVE,
    solv.Transaction.SOLVER_TRANSACTION_UPGRADE: StepType.UPDATE,
    solv.Transaction.SOLVER_TRANSACTION_DOWNGRADE: StepType.DOWNGRADE,
    solv.Transaction.SOLVER_TRANSACTION_REINSTALL: StepType.REINSTALL,
}

# Problem rules that mean two packages cannot coexist
CONFLICT_RULES = {
    solv.Solver.SOLVER_RULE_PKG_CONFLICTS,
    solv.Solver.SOLVER_RULE_PKG_SELF_CONFLICT,
    solv.Solver.SOLVER_RULE_PKG_SAME_NAME,
    solv.Solver.SOLVER_RULE_PKG_OBSOLETES,
    solv.Solver.SOLVER_RULE_PKG_INSTALLED_OBSOLETES,
    solv.Solver.SOLVER_RULE_PKG_IMPLICIT_OBSOLETES,
}


def parse_capability(pool: solv.Pool, pattern: str) -> Optional[solv.Dep]:
    """Parse a dependency pattern into a libsolv Dep.

    Handles formats like:
    - "name"           -> simple dependency
    - "name>=1.0_1"    -> versioned dependency
    - "name-1.0_1"     -> exact pkgver

    Returns None for patterns that cannot be parsed.
    """
    parsed = parse_dependency(pattern)
    if parsed is None:
        return None
    name, op, version = parsed
    if op is None:
        return pool.Dep(name)
    return pool.Dep(name).Rel(OP_FLAGS[op], pool.Dep(to_evr(version)))


class TransactionPlanner:
    """Plans staged jobs against the database with libsolv."""

    def __init__(self, db, native_arch: str, root_dir: Path = Path("/")):
        """Initialize planner.

        Args:
            db: PackageDatabase
            native_arch: Architecture packages must match (noarch always does)
            root_dir: Filesystem root, checked for free space
        """
        self.db = db
        self.native_arch = native_arch
        self.root_dir = Path(root_dir)
        self.pool = None
        self._raw: Dict[int, dict] = {}        # solvable id -> raw record
        self._by_pkgver: Dict[str, solv.XSolvable] = {}

    # =========================================================================
    # Pool
    # =========================================================================

    def _add_solvable(self, pool: solv.Pool, repo: solv.Repo, name: str, raw: dict):
        _, version = pkgver_split(raw.get('pkgver', ''))
        if not version:
            logger.debug(f"Skipping {name}: no version in pkgver")
            return None

        s = repo.add_solvable()
        s.name = name
        s.evr = to_evr(version)
        s.arch = raw.get('architecture') or 'noarch'

        # Versioned self-provide (needed for versioned requires and conflicts)
        s.add_deparray(solv.SOLVABLE_PROVIDES,
                       pool.Dep(name).Rel(solv.REL_EQ, pool.Dep(s.evr)))

        for cap in raw.get('run_depends') or ():
            dep = parse_capability(pool, cap)
            if dep is None:
                logger.warning(f"{raw['pkgver']}: ignoring invalid dependency {cap!r}")
                continue
            s.add_deparray(solv.SOLVABLE_REQUIRES, dep)

        for cap in raw.get('conflicts') or ():
            dep = parse_capability(pool, cap)
            if dep is not None:
                s.add_deparray(solv.SOLVABLE_CONFLICTS, dep)

        self._raw[s.id] = raw
        return s

    def _create_pool(self) -> solv.Pool:
        """Create and populate libsolv Pool from database."""
        pool = solv.Pool()
        pool.setdisttype(solv.Pool.DISTTYPE_RPM)
        pool.setarch(self.native_arch)

        installed = pool.add_repo("@System")
        installed.appdata = {"type": "installed"}
        for name, raw in self.db.iter_installed():
            self._add_solvable(pool, installed, name, raw)
        pool.installed = installed

        for repository in self.db.list_repositories(enabled_only=True):
            repo = pool.add_repo(repository['uri'])
            repo.appdata = {"type": "available", "uri": repository["uri"]}
            for name, raw in self.db.iter_index(repository['id']):
                s = self._add_solvable(pool, repo, name, raw)
                if s is not None:
                    self._by_pkgver.setdefault(raw['pkgver'], s)

        pool.createwhatprovides()
        return pool

    # =========================================================================
    # Jobs
    # =========================================================================

    def _jobs(self, staged: Sequence[StagedJob]) -> Optional[list]:
        jobs = []
        for job in staged:
            if job.action is StepType.INSTALL:
                s = self._by_pkgver.get(job.target)
                if s is None:
                    logger.error(f"Staged package {job.target} is not in the pool")
                    return None
                jobs.append(self.pool.Job(solv.Job.SOLVER_SOLVABLE | solv.Job.SOLVER_INSTALL, s.id))
            elif job.action is StepType.UPDATE:
                sel = self.pool.select(job.target, solv.Selection.SELECTION_NAME)
                if sel.isempty():
                    logger.error(f"Staged update {job.target} is not in the pool")
                    return None
                jobs += sel.jobs(solv.Job.SOLVER_UPDATE)
            else:
                sel = self.pool.select(job.target, solv.Selection.SELECTION_NAME |
                                       solv.Selection.SELECTION_INSTALLED_ONLY)
                if sel.isempty():
                    logger.error(f"Staged removal {job.target} is not installed")
                    return None
                how = solv.Job.SOLVER_ERASE
                if job.cleandeps:
                    how |= solv.Job.SOLVER_CLEANDEPS
                jobs += sel.jobs(how)
        return jobs

    def _classify_problems(self, problems) -> int:
        for problem in problems:
            logger.info(f"Solver problem: {problem}")
            for rule in problem.findallproblemrules():
                if rule.info().type in CONFLICT_RULES:
                    return errno.EAGAIN
        return errno.ENODEV

    # =========================================================================
    # Planning
    # =========================================================================

    def plan(self, staged: Sequence[StagedJob]) -> Tuple[int, List[PlanStep]]:
        """Resolve staged jobs into an ordered plan.

        Returns:
            (0, steps) on success, (errno, []) on failure
        """
        if not staged:
            return 0, []

        self._raw = {}
        self._by_pkgver = {}
        self.pool = self._create_pool()

        jobs = self._jobs(staged)
        if jobs is None:
            return errno.ENXIO, []

        solver = self.pool.Solver()
        solver.set_flag(solv.Solver.SOLVER_FLAG_FOCUS_INSTALLED, 1)
        problems = solver.solve(jobs)
        if problems:
            return self._classify_problems(problems), []

        trans = solver.transaction()
        trans.order()

        requested = {pkgver_split(j.target)[0] if j.action is StepType.INSTALL else j.target
                     for j in staged}
        steps = []
        for s in trans.steps():
            step_type = trans.steptype(s, solv.Transaction.SOLVER_TRANSACTION_SHOW_ACTIVE)
            action = STEP_TYPES.get(step_type)
            if action is None:
                continue
            raw = self._raw.get(s.id, {})
            other = trans.othersolvable(s) if action in (StepType.UPDATE, StepType.DOWNGRADE) else None
            size = raw.get('installed_size')
            steps.append(PlanStep(
                action=action,
                name=s.name,
                version=from_evr(s.evr),
                arch=s.arch,
                repository=raw.get('repository', ''),
                installed_size=size if isinstance(size, int) else 0,
                from_version=from_evr(other.evr) if other else '',
                automatic=s.name not in requested,
                raw=raw,
            ))

        code = self._check_space(steps)
        if code != 0:
            return code, []
        return 0, steps

    def _check_space(self, steps: List[PlanStep]) -> int:
        needed = sum(st.installed_size for st in steps if st.action is not StepType.REMOVE)
        freed = sum(st.installed_size for st in steps if st.action is StepType.REMOVE)
        if needed - freed <= 0:
            return 0
        try:
            free = shutil.disk_usage(self.root_dir).free
        except OSError as e:
            logger.warning(f"Cannot stat {self.root_dir}: {e}")
            return 0
        if needed - freed > free:
            logger.error(f"Transaction needs {needed - freed} bytes, {free} available")
            return errno.ENOSPC
        return 0
