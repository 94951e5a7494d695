"""
Host-facing result sink.

Every host operation reports through a Job:
    - zero or more package(info, package_id, summary) notifications
    - optionally one error_code(kind, message)
    - exactly one finished()

Job.running() wraps an operation so the last two hold on every path.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .errors import EngineError, ErrorKind

logger = logging.getLogger(__name__)


class Info(Enum):
    """Status tag attached to each package notification."""
    INSTALLED = "installed"
    AVAILABLE = "available"
    NORMAL = "normal"
    INSTALLING = "installing"
    REMOVING = "removing"
    UPDATING = "updating"


class Status(Enum):
    """Coarse job status."""
    SETUP = "setup"
    QUERY = "query"
    REFRESH_CACHE = "refresh-cache"
    DEP_RESOLVE = "dep-resolve"
    COMMIT = "commit"
    FINISHED = "finished"


class Job:
    """Collects notifications and forwards them to optional callbacks.

    Args:
        on_package: Called with (info, package_id, summary)
        on_error: Called with (kind, message)
        on_finished: Called once with no arguments
    """

    def __init__(self, on_package: Callable = None, on_error: Callable = None,
                 on_finished: Callable = None):
        self._on_package = on_package
        self._on_error = on_error
        self._on_finished = on_finished
        self.packages: List[Tuple[Info, str, str]] = []
        self.errors: List[Tuple[ErrorKind, str]] = []
        self.status: Status = Status.SETUP
        self.locked = False
        self.is_finished = False

    def package(self, info: Info, package_id: str, summary: str = ""):
        self.packages.append((info, package_id, summary))
        if self._on_package:
            self._on_package(info, package_id, summary)

    def error_code(self, kind: ErrorKind, message: str):
        logger.debug(f"job error {kind.value}: {message}")
        self.errors.append((kind, message))
        if self._on_error:
            self._on_error(kind, message)

    def set_status(self, status: Status):
        self.status = status

    def set_locked(self, locked: bool):
        self.locked = locked

    def finished(self):
        if self.is_finished:
            logger.warning("finished() called twice on the same job, ignoring")
            return
        self.is_finished = True
        self.status = Status.FINISHED
        if self._on_finished:
            self._on_finished()

    @property
    def error(self) -> Optional[Tuple[ErrorKind, str]]:
        return self.errors[0] if self.errors else None

    @contextmanager
    def running(self, status: Status = Status.QUERY):
        """Run an operation body; report its error and always finish."""
        self.set_status(status)
        try:
            yield self
        except EngineError as e:
            self.error_code(e.kind, e.message)
        except Exception as e:
            logger.exception(f"Operation failed: {e}")
            self.error_code(ErrorKind.INTERNAL_ERROR, str(e))
        finally:
            self.finished()
