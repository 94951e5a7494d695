"""Core modules for pkengine"""

from .errors import EngineError, ErrorKind, LockError, TransactionError
from .filters import Filter, FilterSpec
from .job import Info, Job, Status
from .package import PackageIdentity, build_package_id, split_package_id
from .query import PackageQuery
from .transaction import TransactionController, TransactionIntent

__all__ = [
    'EngineError', 'ErrorKind', 'LockError', 'TransactionError',
    'Filter', 'FilterSpec',
    'Info', 'Job', 'Status',
    'PackageIdentity', 'build_package_id', 'split_package_id',
    'PackageQuery',
    'TransactionController', 'TransactionIntent',
]
