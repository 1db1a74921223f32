from pathlib import Path

import pytest

from wis.domain.errors import StorageError
from wis.domain.models import SyncActionType, SyncStatus
from wis.repositories.sqlite_store import SqliteStore


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(tmp_path / "store.db")
    store.init_db()
    return store


def test_unwritten_collection_reads_as_empty(tmp_path: Path):
    store = _store(tmp_path)

    assert store.get_all("items") == []
    assert store.get("items", "missing") is None
    assert store.list_pending() == []


def test_replace_all_swaps_whole_collection(tmp_path: Path):
    store = _store(tmp_path)
    for rid in ("a", "b", "c"):
        store.put("warehouses", {"id": rid, "name": rid.upper(), "prefix": "WH"})

    store.replace_all("warehouses", [{"id": "z", "name": "Zed", "prefix": "WHZ"}])

    assert store.get_all("warehouses") == [{"id": "z", "name": "Zed", "prefix": "WHZ"}]


def test_failed_replace_all_keeps_previous_snapshot(tmp_path: Path):
    store = _store(tmp_path)
    store.put("items", {"id": "it-1", "name": "Kept"})

    with pytest.raises(ValueError):
        store.replace_all("items", [{"id": "it-2", "name": "New"}, {"name": "no id"}])

    assert store.get_all("items") == [{"id": "it-1", "name": "Kept"}]


def test_put_and_delete_single_records(tmp_path: Path):
    store = _store(tmp_path)
    store.put("categories", {"id": "cat-1", "name": "Raw", "code": "RAW"})
    store.put("categories", {"id": "cat-1", "name": "Raw stock", "code": "RAW"})

    assert store.get("categories", "cat-1")["name"] == "Raw stock"
    assert store.delete("categories", "cat-1") is True
    assert store.delete("categories", "cat-1") is False
    assert store.get_all("categories") == []


def test_unknown_collection_is_refused(tmp_path: Path):
    store = _store(tmp_path)

    with pytest.raises(ValueError, match="Unknown collection"):
        store.get_all("users")


def test_enqueue_ids_stay_monotonic_across_restart(tmp_path: Path):
    db = tmp_path / "restart.db"
    store = SqliteStore(db)
    store.init_db()
    first = store.enqueue(SyncActionType.STOCK_IN, {"id": "TX-1"})
    second = store.enqueue(SyncActionType.APPROVE, {"tx_id": "TX-1"})
    store.mark_synced(first)
    store.mark_synced(second)

    reopened = SqliteStore(db)
    reopened.init_db()
    third = reopened.enqueue(SyncActionType.STOCK_OUT, {"id": "TX-2"})

    assert first < second < third
    action = reopened.get_action(third)
    assert action is not None
    assert action.status is SyncStatus.PENDING
    assert action.retries == 0


def test_pending_actions_come_back_in_enqueue_order(tmp_path: Path):
    store = _store(tmp_path)
    ids = [store.enqueue(SyncActionType.STOCK_IN, {"n": n}) for n in range(5)]
    store.mark_synced(ids[2])

    pending = store.list_pending()

    assert [a.id for a in pending] == [ids[0], ids[1], ids[3], ids[4]]
    assert [a.payload["n"] for a in pending] == [0, 1, 3, 4]


def test_marking_terminal_actions_is_a_noop(tmp_path: Path):
    store = _store(tmp_path)
    aid = store.enqueue(SyncActionType.REJECT, {"tx_id": "TX-9", "reason": "Damaged"})

    assert store.mark_failed(aid, "timeout") is True
    assert store.mark_failed(aid, "timeout again") is False
    assert store.mark_synced(aid) is False

    failed = store.get_action(aid)
    assert failed.status is SyncStatus.FAILED
    assert failed.retries == 1
    assert failed.last_error == "timeout"

    assert store.requeue_failed() == 1
    assert store.mark_synced(aid) is True
    assert store.mark_synced(aid) is False
    synced = store.get_action(aid)
    assert synced.status is SyncStatus.SYNCED
    assert synced.retries == 1


def test_transaction_commits_records_and_queue_together(tmp_path: Path):
    store = _store(tmp_path)

    with pytest.raises(RuntimeError):
        with store.transaction() as uow:
            uow.put("transactions", {"id": "TX-1", "status": "PENDING"})
            uow.enqueue(SyncActionType.STOCK_IN, {"id": "TX-1"})
            raise RuntimeError("crash between writes")

    assert store.get_all("transactions") == []
    assert store.list_pending() == []

    with store.transaction() as uow:
        uow.put("transactions", {"id": "TX-2", "status": "PENDING"})
        uow.enqueue(SyncActionType.STOCK_IN, {"id": "TX-2"})

    assert [r["id"] for r in store.get_all("transactions")] == ["TX-2"]
    assert [a.payload["id"] for a in store.list_pending()] == ["TX-2"]


def test_app_state_bucket(tmp_path: Path):
    store = _store(tmp_path)

    assert store.get_app_state("last_sync_at", "never") == "never"
    store.set_app_state("last_sync_at", "2024-05-01T10:00:00+00:00")
    store.set_app_state("filters", {"warehouse": "wh-a"})

    assert store.get_app_state("last_sync_at") == "2024-05-01T10:00:00+00:00"
    assert store.get_app_state("filters") == {"warehouse": "wh-a"}


def test_corrupt_database_surfaces_storage_error(tmp_path: Path):
    db = tmp_path / "corrupt.db"
    db.write_bytes(b"this is not a sqlite database" * 64)

    with pytest.raises(StorageError):
        SqliteStore(db).init_db()


def test_migration_failure_restores_db(tmp_path: Path):
    class BrokenMigrationStore(SqliteStore):
        def _migration_v2_sync_attempts(self, cur):
            raise RuntimeError("forced migration failure")

    db = tmp_path / "broken.db"
    store = SqliteStore(db)
    store.init_db()
    store.put("items", {"id": "it-1", "name": "Survivor"})

    conn = store._conn()
    conn.execute("DELETE FROM schema_migrations WHERE version = 2")
    before = int(conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations").fetchone()[0])
    conn.close()

    with pytest.raises(StorageError, match="Original database restored"):
        BrokenMigrationStore(db).run_migrations()

    conn = store._conn()
    after = int(conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations").fetchone()[0])
    conn.close()

    assert after == before == 1
    assert store.get("items", "it-1") == {"id": "it-1", "name": "Survivor"}


def test_corrupt_json_cells_surface_storage_error(tmp_path: Path):
    store = _store(tmp_path)
    store.put("items", {"id": "it-1", "name": "Bearing"})
    store.set_app_state("filters", {"warehouse": "wh-a"})
    store.enqueue(SyncActionType.STOCK_IN, {"id": "TX-1", "quantity": 2})

    conn = store._conn()
    conn.execute("UPDATE items SET data = '{broken' WHERE id = 'it-1'")
    conn.execute("UPDATE app_state SET value = 'not json' WHERE key = 'filters'")
    conn.execute("UPDATE sync_queue SET payload = '[1,'")
    conn.close()

    with pytest.raises(StorageError, match="items:it-1"):
        store.get("items", "it-1")
    with pytest.raises(StorageError, match="Corrupt stored value"):
        store.get_all("items")
    with pytest.raises(StorageError, match="app_state:filters"):
        store.get_app_state("filters")
    with pytest.raises(StorageError, match="sync_queue"):
        store.list_pending()
