"""
Version utilities for pkengine.

Package versions are written "pkgver" style: ``name-version_revision``
(e.g. ``foo-1.2.3_1``). Provides pkgver splitting, dependency pattern
parsing and version comparison.
"""

import re
from typing import Any, List, Optional, Tuple

# "libfoo>=1.2_1", "bar<2", "baz=1.0_3"
DEP_REGEX = re.compile(r'^([^<>=\s]+?)\s*(>=|<=|==|=|>|<)\s*(\S+)$')

OPERATORS = ('>=', '<=', '==', '=', '>', '<')


def _is_version_token(token: str) -> bool:
    return bool(token) and '-' not in token and any(c.isdigit() for c in token)


def pkgver_split(pkgver: str) -> Tuple[str, str]:
    """Split a pkgver into (name, version).

    The boundary is the last hyphen followed by a version token. Without
    one, the whole string is the name and the version is empty.
    """
    if not pkgver:
        return '', ''
    name, sep, version = pkgver.rpartition('-')
    if not sep or not name or not _is_version_token(version):
        return pkgver, ''
    return name, version


def make_pkgver(name: str, version: str) -> str:
    return f"{name}-{version}"


def split_version(v: str) -> List[Tuple[int, Any]]:
    """Split version into comparable parts (numeric vs alpha).

    Returns tuples (type, value) where type=1 for int, 0 for str, so a
    numeric segment is newer than an alphabetic one (rpmvercmp order).
    """
    parts = re.findall(r'(\d+|[a-zA-Z]+)', v or '0')
    return [(1, int(p)) if p.isdigit() else (0, p) for p in parts]


def version_key(version: str) -> Tuple:
    """Return a sortable key for a ``version_revision`` string.

    Example:
        versions.sort(key=version_key, reverse=True)  # newest first
    """
    base, sep, revision = (version or '').rpartition('_')
    if not sep:
        base, revision = version, '0'
    return (split_version(base), split_version(revision))


def compare_versions(a: str, b: str) -> int:
    """Compare two versions.

    Returns:
        -1 if a is older than b, 0 if equal, 1 if a is newer
    """
    ka, kb = version_key(a), version_key(b)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def to_evr(version: str) -> str:
    """``1.2_3`` -> ``1.2-3``: the revision becomes the libsolv release."""
    base, sep, revision = (version or '').rpartition('_')
    if not sep:
        return version
    return f"{base}-{revision}"


def from_evr(evr: str) -> str:
    base, sep, release = (evr or '').rpartition('-')
    if not sep:
        return evr
    return f"{base}_{release}"


def parse_dependency(pattern: str) -> Optional[Tuple[str, Optional[str], Optional[str]]]:
    """Parse a dependency pattern into (name, operator, version).

    Handles formats like:
    - "foo"             -> ("foo", None, None)
    - "foo>=1.2_1"      -> ("foo", ">=", "1.2_1")
    - "foo-1.2_1"       -> ("foo", "=", "1.2_1")  (exact pkgver)

    Returns None for patterns that cannot be parsed (empty, or an
    operator with no name or version).
    """
    pattern = (pattern or '').strip()
    if not pattern:
        return None

    match = DEP_REGEX.match(pattern)
    if match:
        name, op, version = match.groups()
        if op == '==':
            op = '='
        return name, op, version

    if any(op in pattern for op in OPERATORS):
        return None

    name, version = pkgver_split(pattern)
    if version and '_' in version:
        return name, '=', version
    return pattern, None, None


def dependency_name(pattern: str) -> str:
    """Return the package name a dependency pattern refers to ('' if invalid)."""
    parsed = parse_dependency(pattern)
    return parsed[0] if parsed else ''
