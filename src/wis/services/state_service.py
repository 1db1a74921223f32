from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from wis.domain.models import Category, Item, Notification, Transaction, Warehouse, now_iso

log = logging.getLogger(__name__)

LAST_SYNC_KEY = "last_sync_at"


@dataclass(frozen=True)
class InventorySnapshot:
    items: list[Item] = field(default_factory=list)
    warehouses: list[Warehouse] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)


class StateService:
    """Whole-collection load and persist on top of the durable store."""

    def __init__(self, store):
        self.store = store

    def load_state(self) -> InventorySnapshot:
        return InventorySnapshot(
            items=[Item.from_record(r) for r in self.store.get_all("items")],
            warehouses=[Warehouse.from_record(r) for r in self.store.get_all("warehouses")],
            categories=[Category.from_record(r) for r in self.store.get_all("categories")],
            transactions=[Transaction.from_record(r) for r in self.store.get_all("transactions")],
            notifications=[Notification.from_record(r) for r in self.store.get_all("notifications")],
        )

    def persist(self, collection: str, records: Iterable) -> None:
        """Rewrite a collection from in-memory models or raw records."""
        rows = [r.to_record() if hasattr(r, "to_record") else dict(r) for r in records]
        self.store.replace_all(collection, rows)

    def seed_if_empty(
        self,
        warehouses: Iterable[Warehouse],
        categories: Iterable[Category],
        items: Iterable[Item] = (),
    ) -> bool:
        """Seed the catalog on first run; returns True when seeding happened."""
        with self.store.transaction() as uow:
            if uow.get_all("warehouses") or uow.get_all("items"):
                return False
            uow.replace_all("warehouses", [w.to_record() for w in warehouses])
            uow.replace_all("categories", [c.to_record() for c in categories])
            uow.replace_all("items", [i.to_record() for i in items])
        log.info("store_seeded")
        return True

    def record_sync(self, at: Optional[str] = None) -> None:
        self.store.set_app_state(LAST_SYNC_KEY, at or now_iso())

    def last_sync_at(self) -> Optional[str]:
        return self.store.get_app_state(LAST_SYNC_KEY)
