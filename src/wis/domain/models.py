from __future__ import annotations
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


class ItemStatus(str, Enum):
    RAW = "RAW"
    FINISHED = "FINISHED"
    GOOD_AS_NEW = "GOOD_AS_NEW"
    OLD_USED = "OLD_USED"


class TransactionType(str, Enum):
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"
    TRANSFER = "TRANSFER"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class SyncActionType(str, Enum):
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"
    TRANSFER = "TRANSFER"
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Warehouse:
    id: str
    name: str
    prefix: str

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, r: dict) -> "Warehouse":
        return cls(id=str(r["id"]), name=str(r["name"]), prefix=str(r["prefix"]))


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    code: str
    parent_id: Optional[str] = None

    @property
    def is_main(self) -> bool:
        return self.parent_id is None

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, r: dict) -> "Category":
        return cls(
            id=str(r["id"]),
            name=str(r["name"]),
            code=str(r["code"]),
            parent_id=(str(r["parent_id"]) if r.get("parent_id") else None),
        )


@dataclass(frozen=True)
class Item:
    id: str
    name: str
    warehouse_id: str
    category_id: str
    quantity: int
    base_cost: float
    freight: float
    duties: float
    taxes: float
    status: ItemStatus
    barcode: str
    last_updated: str

    @property
    def true_unit_cost(self) -> float:
        """Landed cost per unit."""
        return self.base_cost + self.freight + self.duties + self.taxes

    def to_record(self) -> dict:
        record = asdict(self)
        record["status"] = self.status.value
        return record

    @classmethod
    def from_record(cls, r: dict) -> "Item":
        return cls(
            id=str(r["id"]),
            name=str(r["name"]),
            warehouse_id=str(r["warehouse_id"]),
            category_id=str(r["category_id"]),
            quantity=int(r["quantity"]),
            base_cost=float(r.get("base_cost", 0.0)),
            freight=float(r.get("freight", 0.0)),
            duties=float(r.get("duties", 0.0)),
            taxes=float(r.get("taxes", 0.0)),
            status=ItemStatus(r.get("status", ItemStatus.RAW.value)),
            barcode=str(r.get("barcode", "")),
            last_updated=str(r.get("last_updated", "")),
        )


@dataclass(frozen=True)
class Transaction:
    id: str
    type: TransactionType
    item_id: str
    warehouse_id: str
    quantity: int
    status: TransactionStatus
    staff_name: str
    timestamp: str
    target_warehouse_id: Optional[str] = None
    rejection_reason: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.status is TransactionStatus.PENDING

    def to_record(self) -> dict:
        record = asdict(self)
        record["type"] = self.type.value
        record["status"] = self.status.value
        return record

    @classmethod
    def from_record(cls, r: dict) -> "Transaction":
        return cls(
            id=str(r["id"]),
            type=TransactionType(r["type"]),
            item_id=str(r["item_id"]),
            warehouse_id=str(r["warehouse_id"]),
            quantity=int(r["quantity"]),
            status=TransactionStatus(r["status"]),
            staff_name=str(r.get("staff_name", "")),
            timestamp=str(r["timestamp"]),
            target_warehouse_id=r.get("target_warehouse_id"),
            rejection_reason=r.get("rejection_reason"),
        )


@dataclass(frozen=True)
class Notification:
    id: str
    title: str
    message: str
    read: bool
    timestamp: str

    def to_record(self) -> dict:
        return asdict(self)

    @classmethod
    def from_record(cls, r: dict) -> "Notification":
        return cls(
            id=str(r["id"]),
            title=str(r["title"]),
            message=str(r["message"]),
            read=bool(r.get("read", False)),
            timestamp=str(r["timestamp"]),
        )


@dataclass(frozen=True)
class SyncAction:
    id: int
    type: SyncActionType
    payload: Any
    status: SyncStatus
    timestamp: str
    retries: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[str] = None

    def to_wire(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "retries": self.retries,
        }
