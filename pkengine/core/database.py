"""
SQLite package database for pkengine

Holds the installed set, the repository pool with each repository's
index, dependency tables used for reverse-dependency queries, and the
transaction history.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from .db import HistoryMixin, InstalledMixin, RepositoryMixin

logger = logging.getLogger(__name__)

# Schema version - increment when schema changes
SCHEMA_VERSION = 2

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER PRIMARY KEY
);

-- Repository pool (order = priority, then insertion)
CREATE TABLE IF NOT EXISTS repositories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uri TEXT NOT NULL UNIQUE,
    enabled INTEGER DEFAULT 1,
    priority INTEGER DEFAULT 50,

    -- Sync state
    last_sync INTEGER,
    index_hash TEXT,

    added_timestamp INTEGER
);

-- Repository indexes: one entry per package name per repository
CREATE TABLE IF NOT EXISTS packages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_id INTEGER NOT NULL,

    name TEXT NOT NULL,
    pkgver TEXT NOT NULL,
    version TEXT NOT NULL,
    arch TEXT NOT NULL,

    short_desc TEXT,
    installed_size INTEGER,
    license TEXT,
    homepage TEXT,

    FOREIGN KEY (repo_id) REFERENCES repositories(id) ON DELETE CASCADE,
    UNIQUE(repo_id, name)
);

CREATE TABLE IF NOT EXISTS requires (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pkg_id INTEGER NOT NULL,
    capability TEXT NOT NULL,
    dep_name TEXT NOT NULL,
    FOREIGN KEY (pkg_id) REFERENCES packages(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS conflicts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pkg_id INTEGER NOT NULL,
    capability TEXT NOT NULL,
    FOREIGN KEY (pkg_id) REFERENCES packages(id) ON DELETE CASCADE
);

-- Installed set
CREATE TABLE IF NOT EXISTS installed (
    name TEXT PRIMARY KEY,
    pkgver TEXT NOT NULL,
    version TEXT NOT NULL,
    arch TEXT NOT NULL,

    short_desc TEXT,
    installed_size INTEGER,
    license TEXT,
    homepage TEXT,

    repository TEXT,           -- URI the package was installed from
    automatic INTEGER DEFAULT 0,
    install_date INTEGER
);

CREATE TABLE IF NOT EXISTS installed_requires (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pkg_name TEXT NOT NULL,
    capability TEXT NOT NULL,
    dep_name TEXT NOT NULL,
    FOREIGN KEY (pkg_name) REFERENCES installed(name) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS installed_conflicts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pkg_name TEXT NOT NULL,
    capability TEXT NOT NULL,
    FOREIGN KEY (pkg_name) REFERENCES installed(name) ON DELETE CASCADE
);

-- Transaction history
CREATE TABLE IF NOT EXISTS history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    action TEXT NOT NULL,      -- 'install', 'remove', 'update'
    status TEXT DEFAULT 'running',  -- 'running', 'complete', 'interrupted'
    command TEXT,
    user TEXT,
    return_code INTEGER
);

CREATE TABLE IF NOT EXISTS history_packages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    history_id INTEGER NOT NULL,
    pkgver TEXT NOT NULL,
    pkg_name TEXT NOT NULL,
    action TEXT NOT NULL,      -- 'install', 'remove', 'update', 'downgrade', 'reinstall'
    reason TEXT NOT NULL,      -- 'explicit', 'dependency'
    previous_version TEXT,
    FOREIGN KEY (history_id) REFERENCES history(id) ON DELETE CASCADE
);

-- Indexes
CREATE INDEX IF NOT EXISTS idx_pkg_name ON packages(name);
CREATE INDEX IF NOT EXISTS idx_pkg_pkgver ON packages(pkgver);
CREATE INDEX IF NOT EXISTS idx_pkg_repo ON packages(repo_id);
CREATE INDEX IF NOT EXISTS idx_requires_pkg ON requires(pkg_id);
CREATE INDEX IF NOT EXISTS idx_conflicts_pkg ON conflicts(pkg_id);
CREATE INDEX IF NOT EXISTS idx_installed_pkgver ON installed(pkgver);
CREATE INDEX IF NOT EXISTS idx_inst_requires_dep ON installed_requires(dep_name);
CREATE INDEX IF NOT EXISTS idx_inst_requires_pkg ON installed_requires(pkg_name);
CREATE INDEX IF NOT EXISTS idx_history_timestamp ON history(timestamp);
CREATE INDEX IF NOT EXISTS idx_history_pkg_name ON history_packages(pkg_name);
"""

# Migrations: dict of from_version -> (to_version, sql_script)
MIGRATIONS = {
    1: (2, """
        -- Migration v1 -> v2: conflicts of installed packages
        CREATE TABLE IF NOT EXISTS installed_conflicts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            pkg_name TEXT NOT NULL,
            capability TEXT NOT NULL,
            FOREIGN KEY (pkg_name) REFERENCES installed(name) ON DELETE CASCADE
        );
    """),
}


class PackageDatabase(RepositoryMixin, InstalledMixin, HistoryMixin):
    """SQLite database for the installed set and repository indexes."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite database file.
                     If None, uses db_path from the loaded configuration.
        """
        if db_path is None:
            from .config import load_config
            db_path = load_config()['db_path']
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self.conn = self._connect()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        # Worker threads share the handle; callers serialize access
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_schema(self):
        """Initialize or migrate database schema."""
        try:
            cursor = self.conn.execute("SELECT version FROM schema_info LIMIT 1")
            row = cursor.fetchone()
            current_version = row[0] if row else 0
        except sqlite3.OperationalError:
            current_version = 0

        if current_version == 0:
            self.conn.executescript(SCHEMA)
            self.conn.execute(
                "INSERT OR REPLACE INTO schema_info (version) VALUES (?)",
                (SCHEMA_VERSION,)
            )
            self.conn.commit()
        elif current_version < SCHEMA_VERSION:
            self._apply_migrations(current_version)
        elif current_version > SCHEMA_VERSION:
            logger.warning(
                f"Database schema version {current_version} is newer than "
                f"supported version {SCHEMA_VERSION}. Consider upgrading pkengine."
            )

    def _apply_migrations(self, from_version: int):
        """Apply all migrations from from_version to SCHEMA_VERSION."""
        version = from_version
        while version < SCHEMA_VERSION:
            if version not in MIGRATIONS:
                raise RuntimeError(
                    f"No migration path from database schema v{version}"
                )

            to_version, migration_sql = MIGRATIONS[version]
            logger.info(f"Migrating database schema v{version} -> v{to_version}")

            try:
                self.conn.executescript(migration_sql)
                self.conn.execute(
                    "UPDATE schema_info SET version = ?", (to_version,)
                )
                self.conn.commit()
                version = to_version
            except sqlite3.Error as e:
                logger.error(f"Migration v{version} -> v{to_version} failed: {e}")
                raise RuntimeError(f"Database migration failed: {e}") from e

        logger.info(f"Database schema is now at version {SCHEMA_VERSION}")

    def close(self):
        """Close database connection."""
        self.conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
