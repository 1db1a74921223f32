from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Iterable, Optional, Protocol

from wis.domain.errors import StorageError
from wis.domain.models import SyncAction, SyncActionType, SyncStatus, now_iso

log = logging.getLogger(__name__)

COLLECTIONS = ("items", "warehouses", "categories", "transactions", "notifications")


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def get(self, collection: str, record_id: str) -> Optional[dict]: ...
    def get_all(self, collection: str) -> list[dict]: ...
    def put(self, collection: str, record: dict) -> None: ...
    def enqueue(self, action_type: SyncActionType | str, payload: Any, timestamp: str | None = None) -> int: ...


def _table(collection: str) -> str:
    if collection not in COLLECTIONS:
        raise ValueError(f"Unknown collection: {collection}")
    return collection


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _loads(raw: str, where: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as exc:
        log.error("store_record_corrupt where=%s error=%s", where, exc)
        raise StorageError(f"Corrupt stored value in {where}: {exc}") from exc


def _record_id(record: dict) -> str:
    rid = record.get("id")
    if rid is None or str(rid) == "":
        raise ValueError("Record has no id")
    return str(rid)


def row_to_action(r) -> SyncAction:
    return SyncAction(
        id=int(r[0]),
        type=SyncActionType(r[1]),
        payload=_loads(r[2], f"sync_queue:{r[0]}"),
        status=SyncStatus(r[3]),
        timestamp=str(r[4]),
        retries=int(r[5]),
        last_error=(str(r[6]) if r[6] is not None else None),
        last_attempt_at=(str(r[7]) if r[7] is not None else None),
    )


_ACTION_COLUMNS = "id, type, payload, status, timestamp, retries, last_error, last_attempt_at"


class StoreUnitOfWork:
    """One SQLite transaction spanning collection writes and queue inserts.

    Entered with ``BEGIN IMMEDIATE`` for writers, so the write lock is held
    from the first statement. Commits on a clean exit, rolls back otherwise;
    any ``sqlite3.Error`` leaves as ``StorageError``.
    """

    def __init__(self, conn: sqlite3.Connection, write: bool = True):
        self.conn = conn
        self.write = write
        self.cur = conn.cursor()

    def __enter__(self) -> "StoreUnitOfWork":
        try:
            self.cur.execute("BEGIN IMMEDIATE" if self.write else "BEGIN")
        except sqlite3.Error as exc:
            self.conn.close()
            raise StorageError(f"Could not open store transaction: {exc}") from exc
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
        except sqlite3.Error as commit_exc:
            raise StorageError(f"Store commit failed: {commit_exc}") from commit_exc
        finally:
            self.conn.close()
        if exc_type is not None and issubclass(exc_type, sqlite3.Error):
            log.error("store_transaction_failed error=%s", exc)
            raise StorageError(str(exc)) from exc

    # ---------- Collections ----------
    def get(self, collection: str, record_id: str) -> Optional[dict]:
        self.cur.execute(f"SELECT data FROM {_table(collection)} WHERE id=?", (str(record_id),))
        row = self.cur.fetchone()
        return _loads(row[0], f"{collection}:{record_id}") if row else None

    def get_all(self, collection: str) -> list[dict]:
        self.cur.execute(f"SELECT data FROM {_table(collection)} ORDER BY rowid")
        return [_loads(r[0], collection) for r in self.cur.fetchall()]

    def put(self, collection: str, record: dict) -> None:
        self.cur.execute(
            f"""
            INSERT INTO {_table(collection)} (id, data) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET data=excluded.data
            """,
            (_record_id(record), _dumps(record)),
        )

    def put_many(self, collection: str, records: Iterable[dict]) -> None:
        for record in records:
            self.put(collection, record)

    def delete(self, collection: str, record_id: str) -> bool:
        self.cur.execute(f"DELETE FROM {_table(collection)} WHERE id=?", (str(record_id),))
        return self.cur.rowcount > 0

    def clear(self, collection: str) -> None:
        self.cur.execute(f"DELETE FROM {_table(collection)}")

    def replace_all(self, collection: str, records: Iterable[dict]) -> None:
        records = list(records)
        self.clear(collection)
        self.put_many(collection, records)

    # ---------- Sync queue ----------
    def enqueue(self, action_type: SyncActionType | str, payload: Any, timestamp: str | None = None) -> int:
        kind = SyncActionType(action_type)
        self.cur.execute(
            """
            INSERT INTO sync_queue (type, payload, status, timestamp, retries)
            VALUES (?, ?, 'PENDING', ?, 0)
            """,
            (kind.value, _dumps(payload), timestamp or now_iso()),
        )
        return int(self.cur.lastrowid)

    def get_action(self, action_id: int) -> Optional[SyncAction]:
        self.cur.execute(f"SELECT {_ACTION_COLUMNS} FROM sync_queue WHERE id=?", (int(action_id),))
        r = self.cur.fetchone()
        return row_to_action(r) if r else None

    def list_actions(self, *statuses: SyncStatus | str) -> list[SyncAction]:
        if statuses:
            values = [SyncStatus(s).value for s in statuses]
            marks = ",".join("?" for _ in values)
            self.cur.execute(
                f"SELECT {_ACTION_COLUMNS} FROM sync_queue WHERE status IN ({marks}) ORDER BY id",
                values,
            )
        else:
            self.cur.execute(f"SELECT {_ACTION_COLUMNS} FROM sync_queue ORDER BY id")
        return [row_to_action(r) for r in self.cur.fetchall()]

    def count_actions(self, *statuses: SyncStatus | str) -> int:
        values = [SyncStatus(s).value for s in statuses] or [s.value for s in SyncStatus]
        marks = ",".join("?" for _ in values)
        self.cur.execute(f"SELECT COUNT(*) FROM sync_queue WHERE status IN ({marks})", values)
        return int(self.cur.fetchone()[0])

    def mark_synced(self, action_id: int) -> bool:
        self.cur.execute(
            "UPDATE sync_queue SET status='SYNCED', last_attempt_at=?, last_error=NULL WHERE id=? AND status='PENDING'",
            (now_iso(), int(action_id)),
        )
        return self.cur.rowcount > 0

    def mark_failed(self, action_id: int, error: str | None = None) -> bool:
        self.cur.execute(
            """
            UPDATE sync_queue
            SET status='FAILED', retries=retries + 1, last_attempt_at=?, last_error=?
            WHERE id=? AND status='PENDING'
            """,
            (now_iso(), error, int(action_id)),
        )
        return self.cur.rowcount > 0

    def requeue_failed(self) -> int:
        self.cur.execute("UPDATE sync_queue SET status='PENDING' WHERE status='FAILED'")
        return int(self.cur.rowcount)

    # ---------- App state ----------
    def get_app_state(self, key: str, default: Any = None) -> Any:
        self.cur.execute("SELECT value FROM app_state WHERE key=?", (key,))
        row = self.cur.fetchone()
        return _loads(row[0], f"app_state:{key}") if row else default

    def set_app_state(self, key: str, value: Any) -> None:
        self.cur.execute(
            """
            INSERT INTO app_state (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (key, _dumps(value)),
        )
