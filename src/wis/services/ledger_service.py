from __future__ import annotations

import logging
import numbers
import uuid
from dataclasses import replace
from typing import Iterable, Optional

from wis.domain.errors import (
    InsufficientStockError,
    InvalidQuantityError,
    InvalidTransferError,
    NotFoundError,
    UnknownTransactionError,
    ValidationError,
)
from wis.domain.models import (
    Category,
    Item,
    Notification,
    SyncActionType,
    Transaction,
    TransactionStatus,
    TransactionType,
    Warehouse,
    now_iso,
)
from wis.repositories.unit_of_work import StoreUnitOfWork
from wis.services.catalog_service import make_barcode, numeric_suffix

log = logging.getLogger("wis.ledger")


def validate_quantity(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, numbers.Integral):
        raise InvalidQuantityError(f"Quantity must be a whole number. Received: {qty!r}")
    if qty <= 0:
        raise InvalidQuantityError("Quantity must be > 0.")
    return int(qty)


class InventoryLedger:
    """Turns stock requests into transactions and applies them on approval.

    Every handler runs in one store transaction: the transaction record, its
    audit notification and the matching sync queue entry are committed
    together or not at all. Item quantities only change in :meth:`approve`.
    """

    def __init__(self, store, queue, default_staff_name: str = "Staff"):
        self.store = store
        self.queue = queue
        self.default_staff_name = default_staff_name

    # ---------- Requests ----------
    def request_stock_in(self, item: Item, qty: int, staff_name: str | None = None) -> Transaction:
        qty = validate_quantity(qty)
        with self.store.transaction() as uow:
            current = self._load_item(uow, item.id)
            tx = self._new_transaction(TransactionType.STOCK_IN, current, qty, staff_name)
            self._record_request(uow, tx, "Approval Required", f"Stock In of {qty} units of {current.name}")
        log.info("tx_requested tx_id=%s type=%s item_id=%s qty=%s", tx.id, tx.type.value, tx.item_id, qty)
        return tx

    def request_stock_out(self, item: Item, qty: int, staff_name: str | None = None) -> Transaction:
        qty = validate_quantity(qty)
        with self.store.transaction() as uow:
            current = self._load_item(uow, item.id)
            if qty > current.quantity:
                raise InvalidQuantityError(f"Not enough stock. Available: {current.quantity}")
            tx = self._new_transaction(TransactionType.STOCK_OUT, current, qty, staff_name)
            self._record_request(uow, tx, "Approval Required", f"Stock Out of {qty} units of {current.name}")
        log.info("tx_requested tx_id=%s type=%s item_id=%s qty=%s", tx.id, tx.type.value, tx.item_id, qty)
        return tx

    def request_transfer(self, item: Item, target_warehouse_id: str, qty: int, staff_name: str | None = None) -> Transaction:
        qty = validate_quantity(qty)
        with self.store.transaction() as uow:
            current = self._load_item(uow, item.id)
            target = self._load_target_warehouse(uow, target_warehouse_id)
            if target.id == current.warehouse_id:
                raise InvalidTransferError("Target warehouse must differ from the item's warehouse.")
            if qty > current.quantity:
                raise InvalidQuantityError(f"Not enough stock. Available: {current.quantity}")
            tx = self._new_transaction(TransactionType.TRANSFER, current, qty, staff_name, target.id)
            self._record_request(uow, tx, "Transfer Pending", f"Relocating {qty} units of {current.name} to {target.name}")
        log.info(
            "tx_requested tx_id=%s type=%s item_id=%s qty=%s target=%s",
            tx.id, tx.type.value, tx.item_id, qty, tx.target_warehouse_id,
        )
        return tx

    def request_bulk_transfer(
        self, item_ids: Iterable[str], target_warehouse_id: str, staff_name: str | None = None
    ) -> list[Transaction]:
        """Move the whole quantity of every selected item to one warehouse.

        Items already in the target or without stock are skipped.
        """
        created: list[Transaction] = []
        with self.store.transaction() as uow:
            target = self._load_target_warehouse(uow, target_warehouse_id)
            for item_id in item_ids:
                item = self._load_item(uow, item_id)
                if item.warehouse_id == target.id or item.quantity <= 0:
                    log.info("bulk_transfer_skipped item_id=%s qty=%s", item.id, item.quantity)
                    continue
                tx = self._new_transaction(TransactionType.TRANSFER, item, item.quantity, staff_name, target.id)
                uow.put("transactions", tx.to_record())
                self.queue.enqueue(SyncActionType.TRANSFER, tx.to_record(), uow=uow)
                created.append(tx)
            if not created:
                raise InvalidTransferError("All selected items are already in this warehouse.")
            self._notify(uow, "Transfer Pending", f"Relocating {len(created)} item(s) to {target.name}")
        log.info("bulk_transfer_requested count=%s target=%s", len(created), target.id)
        return created

    # ---------- Decisions ----------
    def approve(self, tx_id: str) -> Optional[Transaction]:
        """Apply a PENDING transaction to stock; a repeated call is a no-op."""
        with self.store.transaction() as uow:
            tx = self._load_pending(uow, tx_id, "approve")
            if tx is None:
                return None

            source = self._load_item(uow, tx.item_id)
            now = now_iso()
            if tx.type is TransactionType.STOCK_IN:
                new_qty = source.quantity + tx.quantity
            else:
                new_qty = source.quantity - tx.quantity
                if new_qty < 0:
                    log.warning(
                        "tx_approval_blocked tx_id=%s available=%s requested=%s",
                        tx.id, source.quantity, tx.quantity,
                    )
                    raise InsufficientStockError(
                        f"Not enough stock for {source.name}. Available: {source.quantity}, requested: {tx.quantity}"
                    )
            uow.put("items", replace(source, quantity=new_qty, last_updated=now).to_record())

            if tx.type is TransactionType.TRANSFER:
                self._apply_transfer(uow, tx, source, now)

            approved = replace(tx, status=TransactionStatus.APPROVED)
            uow.put("transactions", approved.to_record())
            self._notify(uow, "Transaction Approved", f"{tx.type.value} request for {source.name} completed.")
            self.queue.enqueue(SyncActionType.APPROVE, {"tx_id": tx.id}, uow=uow)

        log.info("tx_approved tx_id=%s type=%s qty=%s", approved.id, approved.type.value, approved.quantity)
        return approved

    def reject(self, tx_id: str, reason: str) -> Optional[Transaction]:
        if reason is None or not str(reason).strip():
            raise ValidationError("A rejection reason is required.")

        with self.store.transaction() as uow:
            tx = self._load_pending(uow, tx_id, "reject")
            if tx is None:
                return None
            rejected = replace(tx, status=TransactionStatus.REJECTED, rejection_reason=str(reason))
            uow.put("transactions", rejected.to_record())

            item = uow.get("items", tx.item_id)
            name = item["name"] if item else "Item"
            self._notify(uow, "Transaction Rejected", f"{tx.type.value} request for {name} was declined.")
            self.queue.enqueue(SyncActionType.REJECT, {"tx_id": tx.id, "reason": str(reason)}, uow=uow)

        log.info("tx_rejected tx_id=%s reason=%s", rejected.id, rejected.rejection_reason)
        return rejected

    # ---------- Queries ----------
    def get_transaction(self, tx_id: str) -> Transaction:
        r = self.store.get("transactions", tx_id)
        if not r:
            raise UnknownTransactionError(f"Transaction not found: {tx_id}")
        return Transaction.from_record(r)

    def list_transactions(self, status: TransactionStatus | str | None = None) -> list[Transaction]:
        txs = [Transaction.from_record(r) for r in self.store.get_all("transactions")]
        if status is not None:
            wanted = TransactionStatus(status)
            txs = [t for t in txs if t.status is wanted]
        return sorted(txs, key=lambda t: t.timestamp)

    def pending_transactions(self) -> list[Transaction]:
        return self.list_transactions(TransactionStatus.PENDING)

    def list_notifications(self) -> list[Notification]:
        notes = [Notification.from_record(r) for r in self.store.get_all("notifications")]
        return sorted(notes, key=lambda n: n.timestamp, reverse=True)

    def mark_notifications_read(self) -> int:
        changed = 0
        with self.store.transaction() as uow:
            for r in uow.get_all("notifications"):
                if not r.get("read"):
                    r["read"] = True
                    uow.put("notifications", r)
                    changed += 1
        return changed

    # ---------- Internals ----------
    def _new_transaction(
        self,
        kind: TransactionType,
        item: Item,
        qty: int,
        staff_name: str | None,
        target_warehouse_id: str | None = None,
    ) -> Transaction:
        prefix = "TR" if kind is TransactionType.TRANSFER else "TX"
        return Transaction(
            id=f"{prefix}-{uuid.uuid4().hex[:12].upper()}",
            type=kind,
            item_id=item.id,
            warehouse_id=item.warehouse_id,
            target_warehouse_id=target_warehouse_id,
            quantity=qty,
            status=TransactionStatus.PENDING,
            staff_name=staff_name or self.default_staff_name,
            timestamp=now_iso(),
        )

    def _record_request(self, uow: StoreUnitOfWork, tx: Transaction, title: str, message: str) -> None:
        uow.put("transactions", tx.to_record())
        self._notify(uow, title, message)
        self.queue.enqueue(tx.type.value, tx.to_record(), uow=uow)

    def _notify(self, uow: StoreUnitOfWork, title: str, message: str) -> None:
        note = Notification(id=uuid.uuid4().hex[:9], title=title, message=message, read=False, timestamp=now_iso())
        uow.put("notifications", note.to_record())

    def _load_item(self, uow: StoreUnitOfWork, item_id: str) -> Item:
        r = uow.get("items", item_id)
        if not r:
            raise NotFoundError(f"Item not found: {item_id}")
        return Item.from_record(r)

    def _load_target_warehouse(self, uow: StoreUnitOfWork, warehouse_id: str) -> Warehouse:
        r = uow.get("warehouses", warehouse_id) if warehouse_id else None
        if not r:
            raise InvalidTransferError(f"Target warehouse not found: {warehouse_id}")
        return Warehouse.from_record(r)

    def _load_pending(self, uow: StoreUnitOfWork, tx_id: str, op: str) -> Optional[Transaction]:
        r = uow.get("transactions", tx_id)
        if not r:
            log.info("tx_unknown op=%s tx_id=%s", op, tx_id)
            return None
        tx = Transaction.from_record(r)
        if not tx.is_pending:
            log.info("tx_already_final op=%s tx_id=%s status=%s", op, tx_id, tx.status.value)
            return None
        return tx

    def _apply_transfer(self, uow: StoreUnitOfWork, tx: Transaction, source: Item, now: str) -> None:
        target_id = tx.target_warehouse_id
        existing = None
        for r in uow.get_all("items"):
            candidate = Item.from_record(r)
            if (
                candidate.warehouse_id == target_id
                and candidate.category_id == source.category_id
                and candidate.name == source.name
            ):
                existing = candidate
                break

        if existing is not None:
            merged = replace(existing, quantity=existing.quantity + tx.quantity, last_updated=now)
            uow.put("items", merged.to_record())
            log.info("transfer_merged tx_id=%s target_item=%s qty=%s", tx.id, merged.id, merged.quantity)
            return

        wh = uow.get("warehouses", target_id)
        cat = uow.get("categories", source.category_id)
        suffix = numeric_suffix()
        while uow.get("items", f"it-{suffix}"):
            suffix = numeric_suffix()
        created = replace(
            source,
            id=f"it-{suffix}",
            warehouse_id=target_id,
            quantity=tx.quantity,
            barcode=make_barcode(
                Warehouse.from_record(wh) if wh else None,
                Category.from_record(cat) if cat else None,
                suffix,
            ),
            last_updated=now,
        )
        uow.put("items", created.to_record())
        log.info("transfer_created tx_id=%s target_item=%s barcode=%s", tx.id, created.id, created.barcode)
