"""
Local SQLite cache of expense rows.

This module keeps a disposable replica of the remote expenses in a single
SQLite file. Rows of every owner share one table, so every read and write takes
the owner id explicitly. The metadata table records, per owner, the last
successful sync and the cache state. The schema is verified on start-up and
recreated when it does not match.
"""

import datetime
import enum
import logging
import pathlib
import sqlite3
import time
from typing import Any, Dict, Iterable, List, Optional, Union

from PySide6 import QtCore

from ..settings import lib
from ..status import status

CACHE_MAX_AGE_DAYS = 7

META_SCHEMA: Dict[str, str] = {
    'owner_id': 'TEXT PRIMARY KEY',
    'last_sync': 'TEXT',
    'state': 'TEXT',
}

EXPENSE_SCHEMA: Dict[str, str] = {
    'local_id': 'INTEGER PRIMARY KEY AUTOINCREMENT',
    'owner_id': 'TEXT NOT NULL',
    'remote_id': 'INTEGER',
    'client_key': 'TEXT NOT NULL',
    'amount': 'REAL NOT NULL',
    'category': 'TEXT NOT NULL',
    'description': 'TEXT NOT NULL',
    'date': 'TEXT NOT NULL',
    'sync_state': 'TEXT NOT NULL',
}

# Columns a caller may change on an existing row
MUTABLE_COLUMNS = frozenset(EXPENSE_SCHEMA) - {'local_id', 'owner_id'}


class Table(enum.StrEnum):
    """Enum for database tables."""
    Meta = 'metatable'
    Expenses = 'expenses'


class CacheState(enum.StrEnum):
    """Enum for cache state values."""
    Uninitialized = 'cache is uninitialized'
    Empty = 'cache is empty'
    Stale = 'cache is stale'
    Error = 'cache has error'
    Valid = 'cache is valid'


def now_str() -> str:
    """Return current UTC date and time as an ISO 8601 string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class DatabaseAPI(QtCore.QObject):
    """Database API for the expense cache. Handles schema creation, validation, and data access.

    Args:
        db_path: Path of the SQLite file. Defaults to the path in the client settings.
        parent: Optional Qt parent.
    """

    def __init__(self, db_path: Optional[Union[str, pathlib.Path]] = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self.db_path: pathlib.Path = pathlib.Path(db_path) if db_path else lib.settings.db_path
        self._initialize_schema_if_needed()

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the cache database.

        Rows are returned as :class:`sqlite3.Row`.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path), timeout=2.0)
        conn.row_factory = sqlite3.Row
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 1000)
        return conn

    @staticmethod
    def _table_exists_in_conn(conn: sqlite3.Connection, table_name: str) -> bool:
        cursor = conn.execute(
            """SELECT name FROM sqlite_master WHERE type='table' AND name=?""",
            (table_name,)
        )
        return cursor.fetchone() is not None

    @classmethod
    def _table_is_valid_in_conn(cls, conn: sqlite3.Connection, table_name: str, schema: Dict[str, str]) -> bool:
        if not cls._table_exists_in_conn(conn, table_name):
            logging.warning(f'Table "{table_name}" is missing.')
            return False
        cursor = conn.execute(f'PRAGMA table_info({table_name})')
        current_columns = {row[1] for row in cursor.fetchall()}
        if not set(schema).issubset(current_columns):
            logging.warning(
                f'Table "{table_name}" schema is invalid. Missing columns: {set(schema) - current_columns}.'
            )
            return False
        return True

    def _initialize_schema_if_needed(self, _retry: bool = True) -> None:
        """Ensure the database file and both tables exist with the expected columns.

        Invalid tables are dropped and recreated. When SQLite itself fails, the
        file is deleted and the schema is created once more.

        Raises:
            status.CacheInvalidException: If the schema cannot be created even after deleting the file.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            meta_is_valid = self._table_is_valid_in_conn(conn, Table.Meta.value, META_SCHEMA)
            expenses_are_valid = self._table_is_valid_in_conn(conn, Table.Expenses.value, EXPENSE_SCHEMA)

            if meta_is_valid and expenses_are_valid:
                logging.debug('Existing database schema is valid.')
                return

            logging.info(
                f'Recreating database schema (meta valid: {meta_is_valid}, expenses valid: {expenses_are_valid}).'
            )
            conn.execute(f'DROP TABLE IF EXISTS {Table.Meta.value}')
            conn.execute(f'DROP TABLE IF EXISTS {Table.Expenses.value}')

            meta_cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in META_SCHEMA.items())
            conn.execute(f'CREATE TABLE {Table.Meta.value} ({meta_cols_sql})')

            expense_cols_sql = ', '.join(f'"{name}" {typedef}' for name, typedef in EXPENSE_SCHEMA.items())
            conn.execute(f'CREATE TABLE {Table.Expenses.value} ({expense_cols_sql})')
            conn.execute(
                f'CREATE INDEX IF NOT EXISTS idx_expenses_owner ON {Table.Expenses.value} (owner_id)'
            )
            conn.commit()
            logging.info('Database schema recreated successfully.')

        except sqlite3.Error as e:
            logging.error(f'SQLite error during schema initialization: {e}. Attempting recovery.', exc_info=True)
            if conn:
                conn.close()
                conn = None
            if not _retry:
                raise status.CacheInvalidException(f'Unrecoverable DB schema error: {e}') from e
            self.delete()
            self._initialize_schema_if_needed(_retry=False)
            logging.info('Database schema forcefully recreated after an error and delete.')
        finally:
            if conn:
                conn.close()

    def delete(self) -> None:
        """Delete the local cache database file, retrying on failure.

        Raises:
            status.CacheInvalidException: If unable to remove the database file after retries.
        """
        db_file = self.db_path
        if not db_file.exists():
            logging.debug('No cache database found to delete.')
            return

        max_attempts = 5
        attempt = 0
        wait_seconds = 1.0

        while attempt < max_attempts:
            attempt += 1
            try:
                db_file.unlink()
                logging.info(f'Cache database removed: {db_file}')
                return
            except OSError as ex:
                logging.error(f'Error removing cache DB (attempt {attempt}/{max_attempts}): {ex}')
                if attempt < max_attempts:
                    logging.debug(f'Retrying in {wait_seconds} seconds...')
                    time.sleep(wait_seconds)
                    wait_seconds *= 1.5
                else:
                    raise status.CacheInvalidException(
                        f'Failed to remove cache DB {db_file} after {max_attempts} attempts: {ex}'
                    ) from ex

    def query(self, owner_id: str, include_deleted: bool = False) -> List[Dict[str, Any]]:
        """Return the owner's cached rows ordered by local_id.

        Args:
            owner_id: Student id of the owner.
            include_deleted: Whether to include rows waiting for a remote delete.

        Returns:
            List[Dict[str, Any]]: The rows as dictionaries.
        """
        sql = f'SELECT * FROM {Table.Expenses.value} WHERE owner_id = ?'
        if not include_deleted:
            sql += " AND sync_state != 'pending_delete'"
        sql += ' ORDER BY local_id'

        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            rows = [dict(r) for r in conn.execute(sql, (owner_id,)).fetchall()]
            logging.debug(f'Loaded {len(rows)} cached rows for owner {owner_id}.')
            return rows
        finally:
            if conn:
                conn.close()

    def get_row(self, owner_id: str, local_id: int) -> Optional[Dict[str, Any]]:
        """Retrieve one of the owner's rows by its local_id.

        Returns:
            Optional[Dict[str, Any]]: Row data, or None when the row does not exist or belongs to someone else.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(
                f'SELECT * FROM {Table.Expenses.value} WHERE owner_id = ? AND local_id = ?',
                (owner_id, local_id)
            ).fetchone()
            if not row:
                logging.debug(f'No row found for owner={owner_id}, local_id={local_id}')
                return None
            return dict(row)
        finally:
            if conn:
                conn.close()

    def find_by_client_key(self, owner_id: str, client_key: str) -> Optional[Dict[str, Any]]:
        """Retrieve one of the owner's rows by its idempotency key."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(
                f'SELECT * FROM {Table.Expenses.value} WHERE owner_id = ? AND client_key = ?',
                (owner_id, client_key)
            ).fetchone()
            return dict(row) if row else None
        finally:
            if conn:
                conn.close()

    @staticmethod
    def _insert_sql() -> str:
        columns = list(EXPENSE_SCHEMA)
        return (
            f'INSERT INTO {Table.Expenses.value} ({", ".join(columns)}) '
            f'VALUES ({", ".join("?" * len(columns))})'
        )

    @staticmethod
    def _row_values(row: Dict[str, Any]) -> tuple:
        # A missing local_id is passed as NULL and assigned by SQLite
        return tuple(row.get(column) for column in EXPENSE_SCHEMA)

    def insert(self, row: Dict[str, Any]) -> int:
        """Insert a single row.

        Args:
            row: Row data keyed by column name. `local_id` is optional.

        Returns:
            int: The local_id of the new row.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            cursor = conn.execute(self._insert_sql(), self._row_values(row))
            conn.commit()
            logging.debug(f'Inserted row local_id={cursor.lastrowid} for owner {row.get("owner_id")}.')
            return cursor.lastrowid
        except sqlite3.Error as e:
            logging.error(f'Failed to insert row: {e}', exc_info=True)
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()

    def bulk_replace(self, owner_id: str, rows: Iterable[Dict[str, Any]]) -> None:
        """Replace all of the owner's rows in one transaction.

        Other owners' rows are untouched. Nothing changes if any insert fails.

        Args:
            owner_id: Student id of the owner.
            rows: The new rows. Each must belong to `owner_id`.

        Raises:
            ValueError: If a row belongs to another owner.
            sqlite3.Error: If the transaction fails. It is rolled back.
        """
        rows = list(rows)
        for row in rows:
            if row.get('owner_id') != owner_id:
                raise ValueError(f'Row owner "{row.get("owner_id")}" does not match "{owner_id}".')

        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            with conn:
                conn.execute(f'DELETE FROM {Table.Expenses.value} WHERE owner_id = ?', (owner_id,))
                conn.executemany(self._insert_sql(), [self._row_values(r) for r in rows])
            logging.info(f'Replaced cached rows for owner {owner_id} with {len(rows)} rows.')
        except sqlite3.Error as e:
            logging.error(f'SQLite error during bulk replace: {e}', exc_info=True)
            raise
        finally:
            if conn:
                conn.close()

    def update_fields(self, owner_id: str, local_id: int, partial: Dict[str, Any]) -> bool:
        """Update some columns of one of the owner's rows.

        Args:
            owner_id: Student id of the owner.
            local_id: Key of the row.
            partial: Column names and their new values.

        Returns:
            bool: True if a row was updated.

        Raises:
            ValueError: If `partial` names a column that cannot be changed.
        """
        unknown = set(partial) - MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f'Cannot update columns: {sorted(unknown)}')
        if not partial:
            return self.get_row(owner_id, local_id) is not None

        assignments = ', '.join(f'"{column}" = ?' for column in partial)
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            cursor = conn.execute(
                f'UPDATE {Table.Expenses.value} SET {assignments} WHERE owner_id = ? AND local_id = ?',
                (*partial.values(), owner_id, local_id)
            )
            conn.commit()
            logging.debug(f'Updated local_id={local_id} for owner {owner_id}: {list(partial)}')
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            logging.error(f'Failed to update local_id={local_id}: {e}', exc_info=True)
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                conn.close()

    def remove(self, owner_id: str, local_id: int) -> bool:
        """Delete one of the owner's rows.

        Returns:
            bool: True if a row was deleted.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            cursor = conn.execute(
                f'DELETE FROM {Table.Expenses.value} WHERE owner_id = ? AND local_id = ?',
                (owner_id, local_id)
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            if conn:
                conn.close()

    def stamp(self, owner_id: str) -> None:
        """Record now as the owner's last successful sync and mark the cache valid."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(
                f'INSERT INTO {Table.Meta.value} (owner_id, last_sync, state) VALUES (?, ?, ?) '
                f'ON CONFLICT(owner_id) DO UPDATE SET last_sync = excluded.last_sync, state = excluded.state',
                (owner_id, now_str(), CacheState.Valid.name)
            )
            conn.commit()
        finally:
            if conn:
                conn.close()

    def get_stamp(self, owner_id: str) -> Optional[datetime.datetime]:
        """Retrieve the owner's last synchronization timestamp.

        Returns:
            Optional[datetime.datetime]: Last sync time, or None if never synced or invalid.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(
                f'SELECT last_sync FROM {Table.Meta.value} WHERE owner_id = ?', (owner_id,)
            ).fetchone()
            if row and row[0]:
                try:
                    return datetime.datetime.fromisoformat(row[0])
                except ValueError:
                    logging.warning(f'Invalid last sync date format in DB: {row[0]}.')
            return None
        finally:
            if conn:
                conn.close()

    def set_state(self, owner_id: str, state: CacheState) -> None:
        """Store the owner's cache state in the metadata table."""
        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            conn.execute(
                f'INSERT INTO {Table.Meta.value} (owner_id, state) VALUES (?, ?) '
                f'ON CONFLICT(owner_id) DO UPDATE SET state = excluded.state',
                (owner_id, state.name)
            )
            conn.commit()
            logging.debug(f'Cache state for owner {owner_id} updated to: {state.value}.')
        finally:
            if conn:
                conn.close()

    def get_state(self, owner_id: str) -> CacheState:
        """Work out and store the owner's cache state.

        The cache is uninitialized until the first successful sync, stale once
        that sync is older than CACHE_MAX_AGE_DAYS, and otherwise empty or valid
        depending on whether the owner has rows.

        Returns:
            CacheState: The current state, or CacheState.Error if SQLite fails.
        """
        try:
            last_sync = self.get_stamp(owner_id)
            if last_sync is None:
                state = CacheState.Uninitialized
            elif (datetime.datetime.now(datetime.timezone.utc) - last_sync).days >= CACHE_MAX_AGE_DAYS:
                state = CacheState.Stale
            elif not self.query(owner_id, include_deleted=True):
                state = CacheState.Empty
            else:
                state = CacheState.Valid
            self.set_state(owner_id, state)
            return state
        except sqlite3.Error as e:
            logging.error(f'SQLite error while reading cache state: {e}', exc_info=True)
            return CacheState.Error
