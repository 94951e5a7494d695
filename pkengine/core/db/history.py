"""Transaction history: one row per committed (or failed) transaction,
one row per package action inside it."""

import getpass
import logging
import sqlite3
import time
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

STATUS_RUNNING = 'running'
STATUS_COMPLETE = 'complete'
STATUS_INTERRUPTED = 'interrupted'


class HistoryMixin:
    """Mixin providing transaction history operations.

    Requires:
        - self.conn: sqlite3.Connection
    """

    def begin_transaction(self, action: str, command: str = None) -> int:
        """Open a history entry in the running state.

        Args:
            action: What the transaction does ('install', 'remove/update', ...)
            command: The staged targets, for display

        Returns:
            History entry ID
        """
        cursor = self.conn.execute(
            "INSERT INTO history (timestamp, action, status, command, user) "
            "VALUES (?, ?, ?, ?, ?)",
            (int(time.time()), action, STATUS_RUNNING, command, getpass.getuser())
        )
        self.conn.commit()
        return cursor.lastrowid

    def record_package(self, transaction_id: int, pkgver: str, name: str,
                       action: str, reason: str, previous_version: str = None):
        """Add one package action to a history entry.

        Not committed here: the row belongs to the caller's SQLite
        transaction and is rolled back with it.
        """
        self.conn.execute(
            "INSERT INTO history_packages "
            "(history_id, pkgver, pkg_name, action, reason, previous_version) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (transaction_id, pkgver, name, action, reason, previous_version)
        )

    def _set_status(self, transaction_id: int, status: str, return_code: int,
                    attempts: int = 10, delay: float = 0.5):
        self.conn.execute(
            "UPDATE history SET status = ?, return_code = ? WHERE id = ?",
            (status, return_code, transaction_id)
        )
        # a reader in another process may briefly hold the WAL lock
        for attempt in range(1, attempts + 1):
            try:
                self.conn.commit()
                return
            except sqlite3.OperationalError as e:
                if "locked" not in str(e) or attempt == attempts:
                    raise
                logger.warning(f"Database locked, retry {attempt}/{attempts}")
                time.sleep(delay * attempt)

    def complete_transaction(self, transaction_id: int, return_code: int = 0):
        self._set_status(transaction_id, STATUS_COMPLETE, return_code)

    def abort_transaction(self, transaction_id: int, return_code: int = -1):
        self._set_status(transaction_id, STATUS_INTERRUPTED, return_code)

    def list_history(self, limit: int = 20, action_filter: str = None) -> List[Dict]:
        """Most recent entries first, with package counts."""
        clauses, params = [], []
        if action_filter:
            clauses.append("h.action = ?")
            params.append(action_filter)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        rows = self.conn.execute(f"""
            SELECT h.*,
                   COUNT(hp.id) AS pkg_count,
                   GROUP_CONCAT(CASE WHEN hp.reason = 'explicit' THEN hp.pkg_name END)
                       AS explicit_pkgs
            FROM history h
            LEFT JOIN history_packages hp ON hp.history_id = h.id
            {where}
            GROUP BY h.id
            ORDER BY h.id DESC
            LIMIT ?
        """, params)
        return [dict(row) for row in rows]

    def get_transaction(self, transaction_id: int) -> Optional[Dict]:
        entry = self.conn.execute(
            "SELECT * FROM history WHERE id = ?", (transaction_id,)
        ).fetchone()
        if entry is None:
            return None

        packages = [dict(row) for row in self.conn.execute(
            "SELECT * FROM history_packages WHERE history_id = ? ORDER BY id",
            (transaction_id,)
        )]
        result = dict(entry)
        result['packages'] = packages
        result['explicit'] = [p for p in packages if p['reason'] == 'explicit']
        result['dependencies'] = [p for p in packages if p['reason'] == 'dependency']
        return result
