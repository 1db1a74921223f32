from __future__ import annotations

import secrets
import time
import uuid
from typing import Optional

from wis.domain.errors import NotFoundError, ValidationError
from wis.domain.models import Category, Item, ItemStatus, Warehouse, now_iso


def numeric_suffix() -> str:
    return f"{time.time_ns() // 1000}{secrets.randbelow(1000):03d}"


def make_barcode(warehouse: Optional[Warehouse], category: Optional[Category], suffix: str) -> str:
    prefix = warehouse.prefix if warehouse else "WH"
    code = category.code if category else "GEN"
    return f"{prefix}-{code}-{suffix}"


class CatalogService:
    def __init__(self, store):
        self.store = store

    # ---------- Warehouses ----------
    def list_warehouses(self) -> list[Warehouse]:
        return [Warehouse.from_record(r) for r in self.store.get_all("warehouses")]

    def get_warehouse(self, warehouse_id: str) -> Optional[Warehouse]:
        r = self.store.get("warehouses", warehouse_id)
        return Warehouse.from_record(r) if r else None

    def add_warehouse(self, name: str, prefix: str, warehouse_id: str | None = None) -> Warehouse:
        name = (name or "").strip()
        prefix = (prefix or "").strip().upper()
        if not name or not prefix:
            raise ValidationError("Warehouse name and prefix are required.")
        wh = Warehouse(id=warehouse_id or f"wh-{uuid.uuid4().hex[:8]}", name=name, prefix=prefix)
        self.store.put("warehouses", wh.to_record())
        return wh

    # ---------- Categories ----------
    def list_categories(self) -> list[Category]:
        return [Category.from_record(r) for r in self.store.get_all("categories")]

    def get_category(self, category_id: str) -> Optional[Category]:
        r = self.store.get("categories", category_id)
        return Category.from_record(r) if r else None

    def add_category(self, name: str, code: str, parent_id: str | None = None, category_id: str | None = None) -> Category:
        name = (name or "").strip()
        code = (code or "").strip().upper()
        if not name:
            raise ValidationError("Category name is required.")
        if len(code) != 3:
            raise ValidationError("Code must be exactly 3 characters.")
        if parent_id:
            parent = self.get_category(parent_id)
            if not parent:
                raise NotFoundError("Parent category not found.")
            if not parent.is_main:
                raise ValidationError("Sub-categories can only be nested under a main category.")

        cat = Category(id=category_id or f"cat-{uuid.uuid4().hex[:8]}", name=name, code=code, parent_id=parent_id or None)
        self.store.put("categories", cat.to_record())
        return cat

    # ---------- Items ----------
    def list_items(self, warehouse_id: str | None = None) -> list[Item]:
        items = [Item.from_record(r) for r in self.store.get_all("items")]
        if warehouse_id is not None:
            items = [i for i in items if i.warehouse_id == warehouse_id]
        return items

    def get_item(self, item_id: str) -> Item:
        r = self.store.get("items", item_id)
        if not r:
            raise NotFoundError("Item not found.")
        return Item.from_record(r)

    def find_item_by_barcode(self, barcode: str) -> Optional[Item]:
        barcode = (barcode or "").strip()
        for item in self.list_items():
            if item.barcode == barcode:
                return item
        return None

    def add_item(
        self,
        name: str,
        warehouse_id: str,
        category_id: str,
        quantity: int = 0,
        base_cost: float = 0.0,
        freight: float = 0.0,
        duties: float = 0.0,
        taxes: float = 0.0,
        status: ItemStatus | str = ItemStatus.RAW,
    ) -> Item:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Item name is required.")
        if int(quantity) < 0:
            raise ValidationError("Quantity must be >= 0.")
        if min(base_cost, freight, duties, taxes) < 0:
            raise ValidationError("Cost components must be >= 0.")
        try:
            status = ItemStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown item status: {status}") from exc

        warehouse = self.get_warehouse(warehouse_id)
        if not warehouse:
            raise NotFoundError("Warehouse not found.")
        category = self.get_category(category_id)
        if not category:
            raise NotFoundError("Category not found.")

        suffix = numeric_suffix()
        item = Item(
            id=f"it-{suffix}",
            name=name,
            warehouse_id=warehouse.id,
            category_id=category.id,
            quantity=int(quantity),
            base_cost=float(base_cost),
            freight=float(freight),
            duties=float(duties),
            taxes=float(taxes),
            status=status,
            barcode=make_barcode(warehouse, category, suffix),
            last_updated=now_iso(),
        )
        self.store.put("items", item.to_record())
        return item
