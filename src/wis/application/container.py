from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from wis.config import SyncSettings
from wis.repositories.sqlite_store import SqliteStore
from wis.services.catalog_service import CatalogService
from wis.services.connectivity_service import ConnectivityMonitor, HttpProbe
from wis.services.excel_service import ExcelService
from wis.services.ledger_service import InventoryLedger
from wis.services.operations_service import OperationsService
from wis.services.replay_client import RemoteReplayClient
from wis.services.state_service import StateService
from wis.services.sync_queue_service import SyncQueueService
from wis.services.sync_service import ReplayCallback, SyncOrchestrator, SyncOutcome, SyncReport


@dataclass(frozen=True)
class AppContainer:
    settings: SyncSettings
    store: SqliteStore
    queue: SyncQueueService
    catalog: CatalogService
    ledger: InventoryLedger
    state: StateService
    monitor: ConnectivityMonitor
    sync: SyncOrchestrator
    excel: ExcelService
    operations: OperationsService


def build_container(
    db_path: Path | str,
    settings: SyncSettings | None = None,
    replay: ReplayCallback | None = None,
    monitor: ConnectivityMonitor | None = None,
    logs_dir: Path | str | None = None,
) -> AppContainer:
    settings = settings or SyncSettings()

    store = SqliteStore(db_path)
    store.init_db()

    queue = SyncQueueService(store)
    catalog = CatalogService(store)
    ledger = InventoryLedger(store, queue, default_staff_name=settings.staff_name)
    state = StateService(store)

    if replay is None:
        replay = RemoteReplayClient(settings.remote_url, timeout=settings.replay_timeout)
    if monitor is None:
        probe = HttpProbe(settings.probe_url, timeout=settings.probe_timeout) if settings.probe_url else None
        monitor = ConnectivityMonitor(probe=probe, check_interval=settings.check_interval)

    sync = SyncOrchestrator(
        queue,
        replay,
        retry_backoff_base=settings.retry_backoff_base,
        retry_backoff_max=settings.retry_backoff_max,
    )
    sync.attach(monitor)

    def remember_sync(report: SyncReport) -> None:
        if report.outcome is SyncOutcome.SYNCED:
            state.record_sync()

    sync.add_listener(remember_sync)

    excel = ExcelService(catalog, ledger, queue)
    operations = OperationsService(
        store,
        queue,
        state,
        db_path=db_path,
        logs_dir=Path(logs_dir) if logs_dir else Path(db_path).parent / "logs",
    )

    return AppContainer(
        settings=settings,
        store=store,
        queue=queue,
        catalog=catalog,
        ledger=ledger,
        state=state,
        monitor=monitor,
        sync=sync,
        excel=excel,
        operations=operations,
    )
