"""Database operation mixins for PackageDatabase.

Each mixin provides a group of related database operations:
- RepositoryMixin: Repository pool and repository indexes
- InstalledMixin: Installed package set and reverse dependencies
- HistoryMixin: Transaction history
"""

from .repositories import RepositoryMixin
from .installed import InstalledMixin
from .history import HistoryMixin

__all__ = [
    'RepositoryMixin',
    'InstalledMixin',
    'HistoryMixin',
]
