"""
Repository index loading and synchronization.

A repository index is a JSON object mapping package name to a raw
record, stored as ``<repository>/<arch>-repodata``. The file may be
zstd, gzip, xz or bzip2 compressed (see compression.py).

Only local repositories are handled: ``file://`` URIs and plain paths.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Tuple
from urllib.parse import unquote, urlparse

from .compression import compress_zstd, decompress_bytes

logger = logging.getLogger(__name__)

INDEX_SUFFIX = "-repodata"


@dataclass
class SyncResult:
    """Result of a repository sync operation."""
    success: bool
    packages_count: int = 0
    unchanged: bool = False
    error: Optional[str] = None


def repository_path(uri: str) -> Path:
    """Local directory for a repository URI.

    Raises:
        ValueError: For remote URIs (http, ftp...)
    """
    parsed = urlparse(uri)
    if parsed.scheme in ('', 'file'):
        return Path(unquote(parsed.path) if parsed.scheme else uri)
    raise ValueError(f"Unsupported repository URI (local only): {uri}")


def index_path(uri: str, arch: str) -> Path:
    return repository_path(uri) / f"{arch}{INDEX_SUFFIX}"


def parse_index(data: bytes, source: str = "<index>") -> Dict[str, dict]:
    """Decode an index blob into a name -> raw record mapping.

    Raises:
        ValueError: If the data is not a (possibly compressed) JSON object
    """
    try:
        text = decompress_bytes(data).decode('utf-8')
        index = json.loads(text)
    except (UnicodeDecodeError, ValueError) as e:
        raise ValueError(f"Invalid repository index {source}: {e}") from e
    if not isinstance(index, dict):
        raise ValueError(f"Invalid repository index {source}: not a JSON object")
    return index


def load_index(path: Path) -> Dict[str, dict]:
    """Read and decode an index file."""
    path = Path(path)
    return parse_index(path.read_bytes(), str(path))


def iter_entries(index: Mapping) -> Iterator[Tuple[str, dict]]:
    """Yield (name, raw) in index order, skipping non-object entries."""
    for name, raw in index.items():
        if isinstance(raw, dict):
            yield name, raw
        else:
            logger.debug(f"Skipping non-object index entry {name!r}")


def write_index(path: Path, packages: Mapping[str, Mapping], compress: bool = True) -> Path:
    """Write an index file (used to publish local repositories and by tests)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = json.dumps(packages, indent=None, sort_keys=True).encode('utf-8')
    path.write_bytes(compress_zstd(data) if compress else data)
    return path


def sync_repository(db, uri: str, arch: str, force: bool = False) -> SyncResult:
    """Re-read one repository index into the database.

    The import is skipped when the file checksum matches the last sync,
    unless force is set.
    """
    repo = db.get_repository(uri)
    if not repo:
        return SyncResult(success=False, error=f"Repository '{uri}' not found")

    try:
        path = index_path(uri, arch)
        data = path.read_bytes()
    except (ValueError, OSError) as e:
        logger.error(f"Cannot read index for {uri}: {e}")
        return SyncResult(success=False, error=str(e))

    digest = hashlib.sha256(data).hexdigest()
    if not force and repo.get('index_hash') == digest:
        logger.debug(f"Index for {uri} is up to date")
        return SyncResult(success=True, unchanged=True)

    try:
        index = parse_index(data, str(path))
    except ValueError as e:
        logger.error(str(e))
        return SyncResult(success=False, error=str(e))

    count = db.replace_index(repo['id'], iter_entries(index), index_hash=digest)
    logger.info(f"Imported {count} packages from {uri}")
    return SyncResult(success=True, packages_count=count)


def sync_all_repositories(db, arch: str, force: bool = False,
                          progress_callback: Callable[[str, int, int], None] = None
                          ) -> List[Tuple[str, SyncResult]]:
    """Synchronize all enabled repositories.

    Args:
        db: Database instance
        arch: Architecture whose index to read
        force: Import even if the checksum is unchanged
        progress_callback: Optional callback(uri, current, total)

    Returns:
        List of (uri, SyncResult) tuples
    """
    repos = db.list_repositories(enabled_only=True)
    results = []
    for i, repo in enumerate(repos):
        if progress_callback:
            progress_callback(repo['uri'], i + 1, len(repos))
        results.append((repo['uri'], sync_repository(db, repo['uri'], arch, force=force)))
    return results
