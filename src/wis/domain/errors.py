class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class InvalidQuantityError(ValidationError):
    pass


class InvalidTransferError(ValidationError):
    pass


class NotFoundError(AppError):
    pass


class UnknownTransactionError(NotFoundError):
    pass


class InsufficientStockError(AppError):
    pass


class StorageError(AppError):
    """Local persistence failed; the operation was not made durable."""


class SyncFailureError(AppError):
    """The remote replay target refused or could not receive a batch."""
