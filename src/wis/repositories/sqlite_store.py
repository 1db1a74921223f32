from __future__ import annotations

import logging
import shutil
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from wis.domain.errors import StorageError
from wis.domain.models import SyncAction, SyncActionType, SyncStatus
from wis.repositories.unit_of_work import COLLECTIONS, StoreUnitOfWork

log = logging.getLogger(__name__)


class SqliteStore:
    """Durable local store: record collections, the sync queue and app state.

    Every write goes through :meth:`transaction`; single-record helpers open
    their own short transaction. Writers are serialized by ``_write_lock``
    on top of SQLite's own write lock.
    """

    def __init__(self, db_path: Path | str, busy_timeout: float = 10.0):
        self.db_path = str(db_path)
        self.busy_timeout = float(busy_timeout)
        self._write_lock = threading.RLock()

    def _conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
            conn.execute("PRAGMA foreign_keys = ON;")
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open store at {self.db_path}: {exc}") from exc
        return conn

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL")
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_sync_attempts),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
                log.info("store_migration_applied version=%s", version)
            conn.commit()
        except Exception as exc:
            conn.rollback()
            conn.close()
            self._restore_pre_migration_backup(backup_path)
            raise StorageError(
                "Store migration failed. Original database restored from automatic backup."
            ) from exc
        conn.close()
        if backup_path is not None:
            backup_path.unlink(missing_ok=True)

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        for name in COLLECTIONS:
            cur.execute(
                f"""
            CREATE TABLE IF NOT EXISTS {name} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
            """
            )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS sync_queue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            type TEXT NOT NULL CHECK(type IN ('STOCK_IN','STOCK_OUT','TRANSFER','APPROVE','REJECT')),
            payload TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'PENDING' CHECK(status IN ('PENDING','SYNCED','FAILED')),
            timestamp TEXT NOT NULL,
            retries INTEGER NOT NULL DEFAULT 0 CHECK(retries >= 0)
        )
        """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_sync_queue_status ON sync_queue (status, id)")

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS app_state (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
        """
        )

    def _migration_v2_sync_attempts(self, cur: sqlite3.Cursor) -> None:
        self._add_column_if_missing(cur, "sync_queue", "last_error", "TEXT")
        self._add_column_if_missing(cur, "sync_queue", "last_attempt_at", "TEXT")

    def _add_column_if_missing(self, cur: sqlite3.Cursor, table: str, column: str, definition: str) -> None:
        cur.execute(f"PRAGMA table_info({table})")
        cols = {str(r[1]) for r in cur.fetchall()}
        if column in cols:
            return
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    # ---------- Transactions ----------
    @contextmanager
    def transaction(self) -> Iterator[StoreUnitOfWork]:
        with self._write_lock:
            with StoreUnitOfWork(self._conn(), write=True) as uow:
                yield uow

    @contextmanager
    def _reader(self) -> Iterator[StoreUnitOfWork]:
        with StoreUnitOfWork(self._conn(), write=False) as uow:
            yield uow

    # ---------- Collections ----------
    def get_all(self, collection: str) -> list[dict]:
        with self._reader() as uow:
            return uow.get_all(collection)

    def get(self, collection: str, record_id: str) -> Optional[dict]:
        with self._reader() as uow:
            return uow.get(collection, record_id)

    def replace_all(self, collection: str, records: Iterable[dict]) -> None:
        records = list(records)
        with self.transaction() as uow:
            uow.replace_all(collection, records)
        log.debug("collection_replaced collection=%s count=%s", collection, len(records))

    def put(self, collection: str, record: dict) -> None:
        with self.transaction() as uow:
            uow.put(collection, record)

    def delete(self, collection: str, record_id: str) -> bool:
        with self.transaction() as uow:
            return uow.delete(collection, record_id)

    # ---------- Sync queue ----------
    def enqueue(self, action_type: SyncActionType | str, payload: Any, timestamp: str | None = None) -> int:
        with self.transaction() as uow:
            return uow.enqueue(action_type, payload, timestamp)

    def get_action(self, action_id: int) -> Optional[SyncAction]:
        with self._reader() as uow:
            return uow.get_action(action_id)

    def list_pending(self) -> list[SyncAction]:
        with self._reader() as uow:
            return uow.list_actions(SyncStatus.PENDING)

    def list_actions(self, status: SyncStatus | str | None = None) -> list[SyncAction]:
        with self._reader() as uow:
            if status is None:
                return uow.list_actions()
            return uow.list_actions(status)

    def count_actions(self, *statuses: SyncStatus | str) -> int:
        with self._reader() as uow:
            return uow.count_actions(*statuses)

    def mark_synced(self, action_id: int) -> bool:
        with self.transaction() as uow:
            return uow.mark_synced(action_id)

    def mark_failed(self, action_id: int, error: str | None = None) -> bool:
        with self.transaction() as uow:
            return uow.mark_failed(action_id, error)

    def requeue_failed(self) -> int:
        with self.transaction() as uow:
            return uow.requeue_failed()

    # ---------- App state ----------
    def get_app_state(self, key: str, default: Any = None) -> Any:
        with self._reader() as uow:
            return uow.get_app_state(key, default)

    def set_app_state(self, key: str, value: Any) -> None:
        with self.transaction() as uow:
            uow.set_app_state(key, value)

    # ---------- Maintenance ----------
    def integrity_check(self) -> str:
        conn = self._conn()
        try:
            cur = conn.cursor()
            cur.execute("PRAGMA integrity_check")
            row = cur.fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Integrity check failed: {exc}") from exc
        finally:
            conn.close()
        return str(row[0]) if row else "unknown"
