"""Prepared transaction plan."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StepType(Enum):
    """Type of package action in a prepared plan."""
    INSTALL = "install"
    REMOVE = "remove"
    UPDATE = "update"
    DOWNGRADE = "downgrade"
    REINSTALL = "reinstall"


@dataclass
class PlanStep:
    """A single package action in a prepared transaction."""
    action: StepType
    name: str
    version: str
    arch: str
    repository: str = ""       # source URI (installed origin for removals)
    installed_size: int = 0
    from_version: str = ""     # previous version for updates/downgrades
    automatic: bool = True     # pulled in as a dependency
    raw: Optional[dict] = None

    @property
    def pkgver(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass
class StagedJob:
    """A package request queued in the store, before planning."""
    action: StepType           # INSTALL, UPDATE or REMOVE
    target: str                # pkgver for installs, name otherwise
    cleandeps: bool = False    # removals: also drop orphaned dependencies
