"""
SQLite storage for serialized prints.

Prints are stored exactly as :meth:`Print.serialize` emits them, keyed by
username and finger. Driver and device id are kept alongside so a gallery
for identification can be restricted to prints the current sensor can use.
"""

import logging
import sqlite3
from contextlib import closing
from typing import Any, Dict, List, Optional

from pyfprint.errors import FprintError
from pyfprint.finger import Finger
from pyfprint.prints import Print


logger = logging.getLogger(__name__)

DB_PATH = "fingerprints.db"


class StorageError(FprintError):
    """Raised when the print database cannot be read or written."""


class PrintStore:
    """Persists prints in a SQLite database."""

    def __init__(self, db_path: str = DB_PATH):
        """
        Args:
            db_path: Path to the SQLite database, created if missing.
        """
        self.db_path = db_path
        self._init_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_database(self):
        try:
            with closing(self._connect()) as conn, conn:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS prints (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        username TEXT NOT NULL,
                        finger INTEGER NOT NULL,
                        driver TEXT,
                        device_id TEXT,
                        data BLOB NOT NULL,
                        date_added TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        UNIQUE (username, finger)
                    )
                ''')
            logger.info(f"Database initialized at {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"Database initialization failed: {e}")
            raise StorageError(f"Database initialization failed: {e}") from e

    def save(self, fp: Print) -> int:
        """
        Store a print, replacing any previous print of the same finger.

        Returns:
            The row id of the stored print.
        """
        username = fp.username
        if not username:
            raise StorageError("Cannot store a print without a username")

        data = fp.serialize()
        try:
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute(
                    "INSERT OR REPLACE INTO prints (username, finger, driver, device_id, data) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (username, int(fp.finger), fp.driver, fp.device_id, data)
                )
                row_id = cursor.lastrowid
        except sqlite3.Error as e:
            logger.error(f"Database error while saving print for '{username}': {e}")
            raise StorageError(f"Could not save print: {e}") from e

        logger.info(f"Stored print for '{username}' ({fp.finger.name}, {len(data)} bytes)")
        return row_id

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        try:
            with closing(self._connect()) as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Database error: {e}")
            raise StorageError(f"Database error: {e}") from e

    def load(self, owner, username: str, finger: Finger = None) -> Optional[Print]:
        """
        Load the print of a user.

        Args:
            owner: The Context used to deserialize the print.
            username: Owner of the print.
            finger: Which finger; the first stored finger when omitted.
        """
        if finger is None:
            rows = self._query(
                "SELECT data FROM prints WHERE username = ? ORDER BY finger LIMIT 1", (username,)
            )
        else:
            rows = self._query(
                "SELECT data FROM prints WHERE username = ? AND finger = ?",
                (username, int(finger))
            )
        if not rows:
            return None
        return Print.deserialize(owner, rows[0]['data'])

    def load_all(self, owner, driver: str = None, device_id: str = None) -> List[Print]:
        """Load every stored print, optionally only those of one driver/device."""
        sql = "SELECT data FROM prints"
        clauses, params = [], []
        if driver is not None:
            clauses.append("driver = ?")
            params.append(driver)
        if device_id is not None:
            clauses.append("device_id = ?")
            params.append(device_id)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY username, finger"

        return [Print.deserialize(owner, row['data']) for row in self._query(sql, params)]

    def list_entries(self) -> List[Dict[str, Any]]:
        """
        List stored prints without deserializing them.

        Returns:
            Dictionaries with 'id', 'username', 'finger', 'driver',
            'device_id' and 'date_added'.
        """
        rows = self._query(
            "SELECT id, username, finger, driver, device_id, date_added "
            "FROM prints ORDER BY username, finger"
        )
        entries = []
        for row in rows:
            entry = dict(row)
            entry['finger'] = Finger(entry['finger'])
            entries.append(entry)
        return entries

    def delete(self, username: str, finger: Finger = None) -> int:
        """
        Delete the prints of a user (or just one finger).

        Returns:
            Number of deleted prints.
        """
        if finger is None:
            sql, params = "DELETE FROM prints WHERE username = ?", (username,)
        else:
            sql, params = "DELETE FROM prints WHERE username = ? AND finger = ?", (username, int(finger))

        try:
            with closing(self._connect()) as conn, conn:
                count = conn.execute(sql, params).rowcount
        except sqlite3.Error as e:
            logger.error(f"Database error during deletion: {e}")
            raise StorageError(f"Could not delete prints: {e}") from e

        logger.info(f"Deleted {count} print(s) of '{username}'")
        return count
