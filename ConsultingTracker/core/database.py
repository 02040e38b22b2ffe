"""
Local SQLite entity store.

This module keeps every record collection as one JSON blob in a key/value table and
the local sync configuration (remote document id, last successful sync) in a metadata
table. The store is the source of truth on a device; the remote document is a backup
that the sync service reconciles with it.

Every caller-initiated write emits :attr:`DatabaseAPI.dataChanged`, which the sync
service listens to. Wholesale replacement after a pull or a merge emits
:attr:`DatabaseAPI.dataReplaced` instead, so writing remote state back never schedules
another push.
"""

import contextlib
import enum
import json
import logging
import pathlib
import sqlite3
import time
from typing import Any, Dict, Iterator, List, Optional

from PySide6 import QtCore

from .models import Collection, Profile, RECORD_TYPES, Snapshot, collection_of, now_str
from ..settings import lib
from ..status import status

PROFILE_KEY = 'profile'

# Define the expected schema for the metadata table
META_SCHEMA: Dict[str, str] = {
    'meta_id': 'INTEGER PRIMARY KEY',
    'created': 'TEXT',
    'document_id': 'TEXT',
    'last_sync': 'TEXT',
}


class Table(enum.StrEnum):
    """Enum for database tables."""
    Meta = 'metatable'
    Store = 'store'


class DatabaseAPI(QtCore.QObject):
    """Entity store API. Handles schema creation, validation, and record access.

    Args:
        db_path: Path of the SQLite file. Defaults to the configured app-data location.
        parent: Optional Qt parent.
    """
    dataChanged = QtCore.Signal(str)
    dataReplaced = QtCore.Signal()

    def __init__(self, db_path: Optional[pathlib.Path] = None, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self.db_path: pathlib.Path = pathlib.Path(db_path) if db_path else lib.settings.db_path
        self._initialize_schema_if_needed()

    def _initialize_schema_if_needed(self, recover: bool = True) -> None:
        """
        Ensures the database file and schema (especially metatable) are valid.
        If the DB file doesn't exist, or metatable is missing/invalid, it recreates them.

        Args:
            recover: Delete the file and try once more if SQLite reports an error.

        Raises:
            status.StoreInvalidException: If the schema cannot be created even after deleting the file.
        """
        conn: Optional[sqlite3.Connection] = None
        try:
            db_file_exists = self.db_path.exists()
            conn = self.connection()

            metatable_is_valid = False
            if db_file_exists:
                if self._table_exists_in_conn(conn, Table.Meta.value):
                    cursor = conn.execute(f"PRAGMA table_info({Table.Meta.value})")
                    current_columns = {row[1] for row in cursor.fetchall()}
                    if set(META_SCHEMA.keys()).issubset(current_columns):
                        metatable_is_valid = True
                    else:
                        missing_cols = set(META_SCHEMA.keys()) - current_columns
                        logging.warning(
                            f"Metadata table '{Table.Meta.value}' schema is invalid. Missing columns: {missing_cols}. "
                            f"Metadata will be recreated."
                        )
                else:
                    logging.warning(
                        f"Database file exists but metadata table '{Table.Meta.value}' is missing. "
                        f"Metadata will be recreated."
                    )

            # Records survive a metadata rebuild; only the sync configuration is lost
            conn.execute(f"CREATE TABLE IF NOT EXISTS {Table.Store.value} (key TEXT PRIMARY KEY, value TEXT)")

            if not metatable_is_valid:
                logging.info(f"Creating '{Table.Meta.value}' (DB existed: {db_file_exists}).")
                conn.execute(f"DROP TABLE IF EXISTS {Table.Meta.value}")
                meta_cols_sql = ", ".join(f'"{name}" {typedef}' for name, typedef in META_SCHEMA.items())
                conn.execute(f"CREATE TABLE {Table.Meta.value} ({meta_cols_sql})")
                conn.execute(
                    f"INSERT INTO {Table.Meta.value} (meta_id, created, document_id, last_sync) "
                    "VALUES (1, ?, NULL, NULL)",
                    (now_str(),)
                )
                conn.commit()
            else:
                logging.debug("Existing database schema and metatable are considered valid.")

        except sqlite3.Error as e:
            logging.error(f"SQLite error during schema initialization: {e}.", exc_info=True)
            if conn:
                conn.close()
                conn = None

            if not recover:
                raise status.StoreInvalidException(f"Unrecoverable DB schema error: {e}") from e

            self.delete()
            self._initialize_schema_if_needed(recover=False)
            logging.info("Database schema forcefully recreated after an error and delete.")
        finally:
            if conn:
                conn.commit()
                conn.close()

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the store database.

        Returns:
            sqlite3.Connection: Database connection object.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path), timeout=2.0)
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 1000)
        return conn

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection, committing on success and rolling back on failure.

        Raises:
            status.StoreInvalidException: Wrapping any SQLite error.
        """
        conn = self.connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            logging.error(f'SQLite error accessing the entity store: {e}', exc_info=True)
            conn.rollback()
            raise status.StoreInvalidException(str(e)) from e
        finally:
            conn.close()

    @classmethod
    def _table_exists_in_conn(cls, conn: sqlite3.Connection, table_name: str) -> bool:
        """Check if a table exists using an existing connection."""
        cursor = conn.execute(
            """SELECT name FROM sqlite_master WHERE type='table' AND name=?""",
            (table_name,)
        )
        return cursor.fetchone() is not None

    @staticmethod
    def _read_blob(conn: sqlite3.Connection, key: str) -> Any:
        row = conn.execute(f"SELECT value FROM {Table.Store.value} WHERE key=?", (key,)).fetchone()
        if not row or row[0] is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise status.StoreInvalidException(f'Stored "{key}" data is not valid JSON: {e}') from e

    @staticmethod
    def _write_blob(conn: sqlite3.Connection, key: str, value: Any) -> None:
        conn.execute(
            f"INSERT OR REPLACE INTO {Table.Store.value} (key, value) VALUES (?, ?)",
            (key, json.dumps(value))
        )

    def delete(self) -> None:
        """Delete the local database file, retrying on failure.

        Raises:
            status.StoreInvalidException: If unable to remove the database file after retries.
        """
        db_file = self.db_path
        if not db_file.exists():
            logging.debug('No store database found to delete.')
            return

        max_attempts = 5
        attempt = 0
        wait_seconds = 1.0

        while attempt < max_attempts:
            attempt += 1
            try:
                db_file.unlink()
                logging.info(f'Store database removed: {db_file}')
                return
            except OSError as ex:
                logging.error(f'Error removing store DB (attempt {attempt}/{max_attempts}): {ex}')
                if attempt < max_attempts:
                    logging.debug(f'Retrying in {wait_seconds} seconds...')
                    time.sleep(wait_seconds)
                    wait_seconds *= 1.5
                else:
                    raise status.StoreInvalidException(
                        f'Failed to remove store DB {db_file} after {max_attempts} attempts: {ex}'
                    ) from ex

    def get_all(self, collection: Collection) -> List[Any]:
        """Return every record of a collection, in stored order.

        Args:
            collection: The collection to read.

        Returns:
            list: The records. Empty if nothing was ever stored.
        """
        record_type = RECORD_TYPES[collection]
        with self._transaction() as conn:
            data = self._read_blob(conn, collection.value) or []
        return [record_type.from_dict(d) for d in data]

    def save_one(self, record: Any) -> List[Any]:
        """Insert or update a record by id.

        Existing records keep their position; new records are appended.

        Args:
            record: A Client, Project, TimeEntry or Invoice.

        Returns:
            list: The full collection after the write.
        """
        collection = collection_of(record)
        records = self.get_all(collection)

        for idx, existing in enumerate(records):
            if existing.id == record.id:
                records[idx] = record
                break
        else:
            records.append(record)

        with self._transaction() as conn:
            self._write_blob(conn, collection.value, [r.to_dict() for r in records])

        logging.debug(f'Saved {collection.value} record {record.id}.')
        self.dataChanged.emit(collection.value)
        return records

    def delete_one(self, collection: Collection, record_id: str) -> List[Any]:
        """Hard-delete a record by id. Deleting an unknown id is a no-op write.

        Returns:
            list: The full collection after the write.
        """
        records = [r for r in self.get_all(collection) if r.id != record_id]
        with self._transaction() as conn:
            self._write_blob(conn, collection.value, [r.to_dict() for r in records])

        logging.debug(f'Deleted {collection.value} record {record_id}.')
        self.dataChanged.emit(collection.value)
        return records

    def get_profile(self) -> Profile:
        with self._transaction() as conn:
            data = self._read_blob(conn, PROFILE_KEY)
        return Profile.from_dict(data) if data else Profile()

    def save_profile(self, profile: Profile) -> None:
        with self._transaction() as conn:
            self._write_blob(conn, PROFILE_KEY, profile.to_dict())
        self.dataChanged.emit(PROFILE_KEY)

    def snapshot(self) -> Snapshot:
        """Read every collection and the profile into one snapshot."""
        with self._transaction() as conn:
            blobs = {c: self._read_blob(conn, c.value) or [] for c in Collection}
            profile = self._read_blob(conn, PROFILE_KEY)

        snapshot = Snapshot(profile=Profile.from_dict(profile) if profile else Profile())
        for collection, data in blobs.items():
            record_type = RECORD_TYPES[collection]
            setattr(snapshot, collection.value, [record_type.from_dict(d) for d in data])
        return snapshot

    def replace_all(self, snapshot: Snapshot) -> None:
        """Replace every collection and the profile in a single transaction.

        Used to apply pulled or merged remote state. Emits :attr:`dataReplaced`, never
        :attr:`dataChanged`.

        Args:
            snapshot: The new complete local state.
        """
        with self._transaction() as conn:
            for collection in Collection:
                self._write_blob(conn, collection.value, [r.to_dict() for r in snapshot.get(collection)])
            self._write_blob(conn, PROFILE_KEY, snapshot.profile.to_dict())

        logging.info(f'Entity store replaced: {snapshot.counts()}')
        self.dataReplaced.emit()

    def is_empty(self) -> bool:
        """True when none of the four collections hold a record."""
        return self.snapshot().is_empty()

    def _get_meta(self, column: str) -> Optional[str]:
        with self._transaction() as conn:
            row = conn.execute(f"SELECT {column} FROM {Table.Meta.value} WHERE meta_id=1").fetchone()
        return row[0] if row and row[0] else None

    def _set_meta(self, **values: Optional[str]) -> None:
        assignments = ', '.join(f'{k}=?' for k in values)
        with self._transaction() as conn:
            conn.execute(
                f"UPDATE {Table.Meta.value} SET {assignments} WHERE meta_id=1",
                tuple(values.values())
            )

    def get_document_id(self) -> Optional[str]:
        return self._get_meta('document_id')

    def set_document_id(self, document_id: Optional[str]) -> None:
        logging.debug(f'Storing remote document id: {document_id}')
        self._set_meta(document_id=document_id)

    def get_last_sync(self) -> Optional[str]:
        return self._get_meta('last_sync')

    def set_last_sync(self, timestamp: Optional[str]) -> None:
        logging.debug(f'Storing last sync time: {timestamp}')
        self._set_meta(last_sync=timestamp)

    def clear_sync_state(self) -> None:
        """Forget the remote document and the last sync time together."""
        logging.info('Clearing local sync configuration.')
        self._set_meta(document_id=None, last_sync=None)
