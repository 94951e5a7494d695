"""Installed package set database operations."""

import time
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from ..version import dependency_name, pkgver_split
from .repositories import _text_list


class InstalledMixin:
    """Mixin providing operations on the installed package set.

    Requires:
        - self.conn: sqlite3.Connection
    """

    def add_installed(self, raw: Mapping, repository: str = None,
                      automatic: bool = False, commit: bool = True):
        """Record a package as installed, replacing any previous version.

        Args:
            raw: Raw record with at least pkgver and architecture
            repository: URI the package came from
            automatic: True when installed as a dependency
            commit: False when batched in a caller transaction
        """
        name, version = pkgver_split(raw['pkgver'])
        size = raw.get('installed_size')
        # ON DELETE CASCADE drops the old requires/conflicts rows
        self.conn.execute("DELETE FROM installed WHERE name = ?", (name,))
        self.conn.execute("""
            INSERT INTO installed
            (name, pkgver, version, arch, short_desc, installed_size,
             license, homepage, repository, automatic, install_date)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (name, raw['pkgver'], version, raw.get('architecture', ''),
              raw.get('short_desc'), size if isinstance(size, int) else None,
              raw.get('license'), raw.get('homepage'),
              repository or raw.get('repository'), int(automatic),
              int(time.time())))
        for cap in _text_list(raw.get('run_depends')):
            self.conn.execute("""
                INSERT INTO installed_requires (pkg_name, capability, dep_name)
                VALUES (?, ?, ?)
            """, (name, cap, dependency_name(cap)))
        for cap in _text_list(raw.get('conflicts')):
            self.conn.execute("""
                INSERT INTO installed_conflicts (pkg_name, capability)
                VALUES (?, ?)
            """, (name, cap))
        if commit:
            self.conn.commit()

    def remove_installed(self, name: str, commit: bool = True) -> bool:
        cursor = self.conn.execute("DELETE FROM installed WHERE name = ?", (name,))
        if commit:
            self.conn.commit()
        return cursor.rowcount > 0

    def _installed_raw(self, row) -> Dict:
        name = row['name']
        requires = self.conn.execute(
            "SELECT capability FROM installed_requires WHERE pkg_name = ? ORDER BY id",
            (name,)
        )
        conflicts = self.conn.execute(
            "SELECT capability FROM installed_conflicts WHERE pkg_name = ? ORDER BY id",
            (name,)
        )
        return {
            'pkgver': row['pkgver'],
            'architecture': row['arch'],
            'short_desc': row['short_desc'] or '',
            'installed_size': row['installed_size'],
            'license': row['license'],
            'homepage': row['homepage'],
            'repository': row['repository'] or '',
            'automatic-install': bool(row['automatic']),
            'run_depends': [r[0] for r in requires],
            'conflicts': [r[0] for r in conflicts],
        }

    def get_installed(self, name: str = None, pkgver: str = None) -> Optional[Dict]:
        """Raw record of an installed package, by name or exact pkgver."""
        if pkgver:
            row = self.conn.execute(
                "SELECT * FROM installed WHERE pkgver = ?", (pkgver,)
            ).fetchone()
        else:
            row = self.conn.execute(
                "SELECT * FROM installed WHERE name = ?", (name,)
            ).fetchone()
        return self._installed_raw(row) if row else None

    def iter_installed(self) -> Iterator[Tuple[str, Dict]]:
        """Iterate (name, raw) over the installed set, in name order."""
        rows = self.conn.execute("SELECT * FROM installed ORDER BY name").fetchall()
        for row in rows:
            yield row['name'], self._installed_raw(row)

    def installed_dependents(self, name: str) -> List[str]:
        """Names of installed packages whose run dependencies name `name`."""
        cursor = self.conn.execute("""
            SELECT DISTINCT ir.pkg_name FROM installed_requires ir
            WHERE ir.dep_name = ? AND ir.pkg_name != ?
            ORDER BY ir.pkg_name
        """, (name, name))
        return [row[0] for row in cursor]
