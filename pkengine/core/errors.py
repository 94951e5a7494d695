"""Error kinds and exceptions for pkengine operations.

Kinds use the PackageKit error names so the host can forward them as-is.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Outcome classification reported to the host."""
    LOCK_UNAVAILABLE = "cannot-get-lock"
    ALREADY_SATISFIED = "package-already-installed"
    NOT_FOUND = "package-not-found"
    NOT_INSTALLED = "package-not-installed"
    SELF_UPDATE_REQUIRED = "package-install-blocked"
    DEPENDENCY_ERROR = "dep-resolution-failed"
    CONFLICT_ERROR = "package-conflicts"
    RESOURCE_EXHAUSTED = "no-space-on-device"
    SOURCE_UNAVAILABLE = "repo-not-found"
    INTERNAL_ERROR = "internal-error"
    TRANSACTION_ERROR = "transaction-error"
    INVALID_PACKAGE_ID = "package-id-invalid"
    UNKNOWN = "unknown"


class EngineError(Exception):
    """Base error carrying an ErrorKind.

    Args:
        kind: Error classification
        message: Human readable message
        package: Package name or pkgver the error is about, if any
        code: Raw errno returned by the store, if any
    """

    def __init__(self, kind: ErrorKind, message: str,
                 package: Optional[str] = None, code: Optional[int] = None):
        self.kind = kind
        self.message = message
        self.package = package
        self.code = code
        super().__init__(message)


class LockError(EngineError):
    """Raised when the package database lock is held elsewhere."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(ErrorKind.LOCK_UNAVAILABLE, message, code=code)


class TransactionError(EngineError):
    """Raised when staging, preparing or committing a transaction fails."""


class InvalidPackageId(ValueError):
    """Raised when a package id string does not split into four fields."""

    def __init__(self, package_id: str):
        self.package_id = package_id
        super().__init__(f"Invalid package id: {package_id!r}")
