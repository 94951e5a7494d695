"""Package identity and normalized views of raw store records.

A raw record is the mapping the store hands out for one package
(``pkgver``, ``architecture``, ``short_desc``, ``repository``, ...).
The view layer turns it into a stable identity tuple and never raises:
missing fields simply come out empty.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from .errors import InvalidPackageId
from .version import make_pkgver, pkgver_split

PACKAGE_ID_SEPARATOR = ';'
PACKAGE_ID_FIELDS = 4


def build_package_id(name: str, version: str, arch: str, repository: str) -> str:
    """Join the identity fields into a package id string."""
    return PACKAGE_ID_SEPARATOR.join((name, version, arch, repository))


def split_package_id(package_id: str) -> Tuple[str, str, str, str]:
    """Split a package id string built by build_package_id().

    Raises:
        InvalidPackageId: If the string does not have exactly four fields
    """
    parts = (package_id or '').split(PACKAGE_ID_SEPARATOR)
    if len(parts) != PACKAGE_ID_FIELDS:
        raise InvalidPackageId(package_id)
    return parts[0], parts[1], parts[2], parts[3]


def format_repository(uri: Optional[str]) -> str:
    """Reduce a repository URI to its final path segment.

    "https://repo.example.org/current/musl" -> "musl". A missing URI or
    one without any "/" gives an empty label.
    """
    if not uri:
        return ''
    head, sep, tail = uri.rpartition('/')
    if not sep:
        return ''
    return tail


@dataclass(frozen=True)
class PackageIdentity:
    """(name, version, arch, repository) naming one package instance."""
    name: str
    version: str
    arch: str
    repository: str

    @property
    def package_id(self) -> str:
        return build_package_id(self.name, self.version, self.arch, self.repository)

    @property
    def pkgver(self) -> str:
        return make_pkgver(self.name, self.version)

    @classmethod
    def from_package_id(cls, package_id: str) -> 'PackageIdentity':
        return cls(*split_package_id(package_id))

    def __str__(self) -> str:
        return self.package_id


@dataclass
class PackageRecord:
    """A normalized package record, valid for one enumeration step."""
    identity: PackageIdentity
    summary: str = ""
    installed_size: Optional[int] = None
    license: Optional[str] = None
    homepage: Optional[str] = None
    raw: Any = None

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def arch(self) -> str:
        return self.identity.arch


def _text(raw: Mapping, key: str) -> str:
    value = raw.get(key)
    return value if isinstance(value, str) else ''


def normalize(raw: Mapping, known_name: Optional[str] = None,
              repository: Optional[str] = None) -> PackageIdentity:
    """Build the identity of a raw record.

    Args:
        raw: Raw store record
        known_name: Package name when the caller already knows it (the
            store key); otherwise derived from the record's pkgver
        repository: Source URI overriding the record's own "repository"
    """
    pkgver = _text(raw, 'pkgver')
    name, version = pkgver_split(pkgver)
    if known_name:
        name = known_name

    uri = repository if repository is not None else _text(raw, 'repository')

    return PackageIdentity(
        name=name,
        version=version,
        arch=_text(raw, 'architecture'),
        repository=format_repository(uri),
    )


def make_record(raw: Mapping, identity: PackageIdentity) -> PackageRecord:
    """Attach the descriptive fields of a raw record to an identity."""
    size = raw.get('installed_size')
    if isinstance(size, bool) or not isinstance(size, int) or size < 0:
        size = None

    return PackageRecord(
        identity=identity,
        summary=_text(raw, 'short_desc'),
        installed_size=size,
        license=_text(raw, 'license') or None,
        homepage=_text(raw, 'homepage') or None,
        raw=raw,
    )
