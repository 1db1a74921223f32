from .catalog_service import CatalogService
from .connectivity_service import ConnectivityMonitor, HttpProbe
from .excel_service import ExcelService
from .ledger_service import InventoryLedger
from .operations_service import OperationsService
from .replay_client import RemoteReplayClient
from .state_service import StateService
from .sync_queue_service import SyncQueueService
from .sync_service import SyncOrchestrator

__all__ = [
    "CatalogService",
    "ConnectivityMonitor",
    "HttpProbe",
    "ExcelService",
    "InventoryLedger",
    "OperationsService",
    "RemoteReplayClient",
    "StateService",
    "SyncQueueService",
    "SyncOrchestrator",
]
