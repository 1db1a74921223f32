from __future__ import annotations

import json
import logging

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from wis.domain.errors import ValidationError

log = logging.getLogger(__name__)

REQUIRED_HEADERS = ["name", "warehouse", "category", "quantity", "base_cost", "freight", "duties", "taxes", "status"]


class ExcelService:
    def __init__(self, catalog, ledger, queue):
        self.catalog = catalog
        self.ledger = ledger
        self.queue = queue

    def import_items_excel(self, path: str) -> tuple[int, int]:
        """
        Bulk upload of new items. One row per item.
        Headers:
          name | warehouse | category | quantity | base_cost | freight | duties | taxes | status
        warehouse matches id, name or prefix; category matches id, name or code.
        """
        wb = load_workbook(path)
        ws = wb.active

        headers = {}
        for col in range(1, ws.max_column + 1):
            v = ws.cell(row=1, column=col).value
            if isinstance(v, str):
                headers[v.strip().lower()] = col

        for r in REQUIRED_HEADERS:
            if r not in headers:
                raise ValidationError(f"Missing column header: {r}")

        warehouses = {}
        for wh in self.catalog.list_warehouses():
            for key in (wh.id, wh.name, wh.prefix):
                warehouses[key.strip().lower()] = wh
        categories = {}
        for cat in self.catalog.list_categories():
            for key in (cat.id, cat.name, cat.code):
                categories[key.strip().lower()] = cat

        ok = 0
        skipped = 0

        for row in range(2, ws.max_row + 1):
            def cell(name: str):
                return ws.cell(row=row, column=headers[name]).value

            try:
                name = cell("name")
                if not name:
                    skipped += 1
                    continue

                wh = warehouses.get(str(cell("warehouse") or "").strip().lower())
                cat = categories.get(str(cell("category") or "").strip().lower())
                if wh is None or cat is None:
                    log.warning("Excel import skipped row %s: unknown warehouse or category", row)
                    skipped += 1
                    continue

                self.catalog.add_item(
                    name=str(name).strip(),
                    warehouse_id=wh.id,
                    category_id=cat.id,
                    quantity=int(float(cell("quantity") or 0)),
                    base_cost=float(cell("base_cost") or 0),
                    freight=float(cell("freight") or 0),
                    duties=float(cell("duties") or 0),
                    taxes=float(cell("taxes") or 0),
                    status=str(cell("status") or "RAW").strip().upper(),
                )
                ok += 1
            except Exception as e:
                log.warning("Excel import skipped row %s: %s", row, e)
                skipped += 1

        log.info("excel_items_imported ok=%s skipped=%s path=%s", ok, skipped, path)
        return ok, skipped

    def export_ledger_excel(self, path: str) -> None:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def add_table(ws, name: str, end_row: int, end_col: int):
            if end_row < 2:
                return
            ref = f"A1:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        warehouses = {w.id: w for w in self.catalog.list_warehouses()}
        categories = {c.id: c for c in self.catalog.list_categories()}

        # -------- 1) Items --------
        ws = wb.active
        ws.title = "Items"
        ws.append(["Barcode", "Name", "Warehouse", "Category", "Qty", "Status", "Landed cost", "Stock value"])
        bold_row(ws, 1)
        for item in self.catalog.list_items():
            wh = warehouses.get(item.warehouse_id)
            cat = categories.get(item.category_id)
            ws.append([
                item.barcode,
                item.name,
                wh.name if wh else item.warehouse_id,
                cat.name if cat else item.category_id,
                item.quantity,
                item.status.value,
                item.true_unit_cost,
                item.true_unit_cost * item.quantity,
            ])
            money(ws.cell(row=ws.max_row, column=7))
            money(ws.cell(row=ws.max_row, column=8))
        add_table(ws, "ItemsTable", ws.max_row, 8)

        # -------- 2) Transactions --------
        ws = wb.create_sheet("Transactions")
        ws.append(["Id", "Type", "Item", "From", "To", "Qty", "Status", "Staff", "Timestamp", "Rejection reason"])
        bold_row(ws, 1)
        for tx in self.ledger.list_transactions():
            ws.append([
                tx.id,
                tx.type.value,
                tx.item_id,
                tx.warehouse_id,
                tx.target_warehouse_id or "",
                tx.quantity,
                tx.status.value,
                tx.staff_name,
                tx.timestamp,
                tx.rejection_reason or "",
            ])
        add_table(ws, "TransactionsTable", ws.max_row, 10)

        # -------- 3) Sync queue --------
        ws = wb.create_sheet("Sync Queue")
        ws.append(["Id", "Type", "Status", "Retries", "Timestamp", "Last error", "Payload"])
        bold_row(ws, 1)
        for action in self.queue.list_actions():
            ws.append([
                action.id,
                action.type.value,
                action.status.value,
                action.retries,
                action.timestamp,
                action.last_error or "",
                json.dumps(action.payload, ensure_ascii=False),
            ])
        add_table(ws, "SyncQueueTable", ws.max_row, 7)

        for sheet in wb.worksheets:
            for col in range(1, sheet.max_column + 1):
                sheet.column_dimensions[get_column_letter(col)].width = 18

        wb.save(path)
        log.info("excel_ledger_exported path=%s", path)
