"""Filter chain applied to package records during queries."""

from dataclasses import dataclass, replace
from enum import Flag
from typing import Iterable, List, Tuple

from .package import PackageRecord


class Filter(Flag):
    """Selector bits understood by the query layer.

    INSTALLED and NOT_INSTALLED are independent bits; neither set means
    both installed and available packages are wanted.
    """
    NONE = 0
    INSTALLED = 1
    NOT_INSTALLED = 2
    ARCH = 4
    NOT_ARCH = 8


# PackageKit filter text -> bit
_FILTER_NAMES = {
    'installed': Filter.INSTALLED,
    '~installed': Filter.NOT_INSTALLED,
    'arch': Filter.ARCH,
    '~arch': Filter.NOT_ARCH,
}

SUPPORTED_FILTERS = Filter.INSTALLED | Filter.NOT_INSTALLED | Filter.ARCH | Filter.NOT_ARCH


def casefold_tokens(values: Iterable[str]) -> Tuple[str, ...]:
    return tuple(v.casefold() for v in values)


@dataclass(frozen=True)
class FilterSpec:
    """Selector flags plus case-folded free-text search tokens."""
    filters: Filter = Filter.NONE
    names: Tuple[str, ...] = ()
    details: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> 'FilterSpec':
        """Parse PackageKit filter text such as "installed;~arch".

        Unknown filter names are ignored, "none" and "" select nothing.
        """
        flags = Filter.NONE
        for item in (text or '').split(';'):
            flags |= _FILTER_NAMES.get(item.strip(), Filter.NONE)
        return cls(filters=flags)

    def with_names(self, values: Iterable[str]) -> 'FilterSpec':
        return replace(self, names=casefold_tokens(values))

    def with_details(self, values: Iterable[str]) -> 'FilterSpec':
        return replace(self, details=casefold_tokens(values))

    def without_search(self) -> 'FilterSpec':
        return replace(self, names=(), details=())

    def has(self, flag: Filter) -> bool:
        return bool(self.filters & flag)

    @property
    def has_installed(self) -> bool:
        return self.has(Filter.INSTALLED)

    @property
    def has_not_installed(self) -> bool:
        return self.has(Filter.NOT_INSTALLED)

    @property
    def wants_installed(self) -> bool:
        """Run the installed phase: INSTALLED set, or neither bit set."""
        return self.has(Filter.INSTALLED) or not self.has(Filter.NOT_INSTALLED)

    @property
    def wants_available(self) -> bool:
        """Run the available phase: NOT_INSTALLED set, or neither bit set."""
        return self.has(Filter.NOT_INSTALLED) or not self.has(Filter.INSTALLED)


def admits_arch(record: PackageRecord, spec: FilterSpec, native_arch: str) -> bool:
    # ARCH and NOT_ARCH together reject everything
    if spec.has(Filter.ARCH) and record.arch != native_arch:
        return False
    if spec.has(Filter.NOT_ARCH) and record.arch == native_arch:
        return False
    return True


def matches_names(record: PackageRecord, tokens: Tuple[str, ...]) -> bool:
    name = record.name.casefold()
    return all(token in name for token in tokens)


def matches_details(record: PackageRecord, tokens: Tuple[str, ...]) -> bool:
    name = record.name.casefold()
    summary = record.summary.casefold()
    return all(token in name or token in summary for token in tokens)


def admits(record: PackageRecord, spec: FilterSpec, native_arch: str) -> bool:
    """Return True if the record passes every filter in spec."""
    if not admits_arch(record, spec, native_arch):
        return False
    if spec.names and not matches_names(record, spec.names):
        return False
    if spec.details and not matches_details(record, spec.details):
        return False
    return True


def filter_names(flags: Filter) -> List[str]:
    """PackageKit filter names for the bits set in flags."""
    return [name for name, flag in _FILTER_NAMES.items() if flags & flag]
