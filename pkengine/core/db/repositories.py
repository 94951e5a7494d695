"""Repository pool and index database operations."""

import logging
import time
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from ..version import dependency_name, pkgver_split

logger = logging.getLogger(__name__)


def _text_list(value) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [v for v in value if isinstance(v, str) and v]


class RepositoryMixin:
    """Mixin providing repository and repository-index operations.

    Requires:
        - self.conn: sqlite3.Connection
    """

    # =========================================================================
    # Repositories
    # =========================================================================

    def add_repository(self, uri: str, priority: int = 50, enabled: bool = True) -> int:
        """Add a repository to the pool.

        Returns:
            Repository ID
        """
        cursor = self.conn.execute("""
            INSERT INTO repositories (uri, enabled, priority, added_timestamp)
            VALUES (?, ?, ?, ?)
        """, (uri, int(enabled), priority, int(time.time())))
        self.conn.commit()
        return cursor.lastrowid

    def remove_repository(self, uri: str) -> bool:
        """Remove a repository and its index. Returns False if unknown."""
        cursor = self.conn.execute("DELETE FROM repositories WHERE uri = ?", (uri,))
        self.conn.commit()
        return cursor.rowcount > 0

    def get_repository(self, uri: str) -> Optional[Dict]:
        row = self.conn.execute(
            "SELECT * FROM repositories WHERE uri = ?", (uri,)
        ).fetchone()
        return dict(row) if row else None

    def list_repositories(self, enabled_only: bool = False) -> List[Dict]:
        """List repositories in pool order (priority, then insertion)."""
        query = "SELECT * FROM repositories"
        if enabled_only:
            query += " WHERE enabled = 1"
        query += " ORDER BY priority, id"
        return [dict(row) for row in self.conn.execute(query)]

    def enable_repository(self, uri: str, enabled: bool = True) -> bool:
        cursor = self.conn.execute(
            "UPDATE repositories SET enabled = ? WHERE uri = ?",
            (int(enabled), uri)
        )
        self.conn.commit()
        return cursor.rowcount > 0

    # =========================================================================
    # Index import
    # =========================================================================

    def replace_index(self, repo_id: int, entries: Iterable[Tuple[str, Mapping]],
                      index_hash: str = None) -> int:
        """Replace a repository index with new entries.

        Entries lacking a pkgver or architecture are skipped.

        Args:
            repo_id: Repository ID
            entries: (name, raw record) pairs
            index_hash: Checksum of the index file, stored for change detection

        Returns:
            Number of packages imported
        """
        count = 0
        with self.conn:
            self.conn.execute("DELETE FROM packages WHERE repo_id = ?", (repo_id,))
            for name, raw in entries:
                if not isinstance(raw, Mapping):
                    logger.warning(f"Skipping malformed index entry {name!r}")
                    continue
                pkgver = raw.get('pkgver')
                arch = raw.get('architecture')
                if not isinstance(pkgver, str) or not isinstance(arch, str):
                    logger.warning(f"Skipping index entry {name!r} without pkgver/architecture")
                    continue
                _, version = pkgver_split(pkgver)
                size = raw.get('installed_size')
                cursor = self.conn.execute("""
                    INSERT OR REPLACE INTO packages
                    (repo_id, name, pkgver, version, arch, short_desc,
                     installed_size, license, homepage)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (repo_id, name, pkgver, version, arch, raw.get('short_desc'),
                      size if isinstance(size, int) else None,
                      raw.get('license'), raw.get('homepage')))
                pkg_id = cursor.lastrowid
                for cap in _text_list(raw.get('run_depends')):
                    self.conn.execute(
                        "INSERT INTO requires (pkg_id, capability, dep_name) VALUES (?, ?, ?)",
                        (pkg_id, cap, dependency_name(cap))
                    )
                for cap in _text_list(raw.get('conflicts')):
                    self.conn.execute(
                        "INSERT INTO conflicts (pkg_id, capability) VALUES (?, ?)",
                        (pkg_id, cap)
                    )
                count += 1
            self.conn.execute("""
                UPDATE repositories SET last_sync = ?, index_hash = ? WHERE id = ?
            """, (int(time.time()), index_hash, repo_id))
        return count

    # =========================================================================
    # Index queries
    # =========================================================================

    def _deps(self, table: str, pkg_id: int) -> List[str]:
        cursor = self.conn.execute(
            f"SELECT capability FROM {table} WHERE pkg_id = ? ORDER BY id", (pkg_id,)
        )
        return [row[0] for row in cursor]

    def _available_raw(self, row) -> Dict:
        return {
            'pkgver': row['pkgver'],
            'architecture': row['arch'],
            'short_desc': row['short_desc'] or '',
            'installed_size': row['installed_size'],
            'license': row['license'],
            'homepage': row['homepage'],
            'repository': row['uri'],
            'run_depends': self._deps('requires', row['id']),
            'conflicts': self._deps('conflicts', row['id']),
        }

    def iter_index(self, repo_id: int) -> Iterator[Tuple[str, Dict]]:
        """Iterate (name, raw) over one repository index."""
        cursor = self.conn.execute("""
            SELECT p.*, r.uri FROM packages p
            JOIN repositories r ON p.repo_id = r.id
            WHERE p.repo_id = ?
            ORDER BY p.id
        """, (repo_id,))
        for row in cursor.fetchall():
            yield row['name'], self._available_raw(row)

    def find_available(self, name: str = None, pkgver: str = None) -> List[Dict]:
        """Raw records matching a name or an exact pkgver, in pool order.

        Only enabled repositories are searched.
        """
        column, value = ('p.pkgver', pkgver) if pkgver else ('p.name', name)
        cursor = self.conn.execute(f"""
            SELECT p.*, r.uri FROM packages p
            JOIN repositories r ON p.repo_id = r.id
            WHERE {column} = ? AND r.enabled = 1
            ORDER BY r.priority, r.id
        """, (value,))
        return [self._available_raw(row) for row in cursor.fetchall()]
