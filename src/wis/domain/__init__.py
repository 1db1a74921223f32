from .models import (
    Category,
    Item,
    ItemStatus,
    Notification,
    SyncAction,
    SyncActionType,
    SyncStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
    Warehouse,
)
from .errors import (
    AppError,
    ValidationError,
    InvalidQuantityError,
    InvalidTransferError,
    NotFoundError,
    UnknownTransactionError,
    InsufficientStockError,
    StorageError,
    SyncFailureError,
)

__all__ = [
    "Category",
    "Item",
    "ItemStatus",
    "Notification",
    "SyncAction",
    "SyncActionType",
    "SyncStatus",
    "Transaction",
    "TransactionStatus",
    "TransactionType",
    "Warehouse",
    "AppError",
    "ValidationError",
    "InvalidQuantityError",
    "InvalidTransferError",
    "NotFoundError",
    "UnknownTransactionError",
    "InsufficientStockError",
    "StorageError",
    "SyncFailureError",
]
