from __future__ import annotations

from typing import Any, Dict, Iterable

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter


def build_stock_levels_excel(fp, rows: Iterable[Dict[str, Any]]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Stock Levels"

    headers = [
        "Item ID", "Item", "Generic Name", "Category", "Unit",
        "Total Qty", "Reorder Level", "Max Level", "Batches",
        "Expiring Batches", "Needs Reorder",
    ]
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for r in rows:
        ws.append([
            r["item_id"],
            r["name"],
            r.get("generic_name") or "",
            r["category"],
            r["unit"],
            int(r["total_quantity"]),
            int(r["reorder_level"]),
            int(r["max_level"]),
            int(r["batch_count"]),
            int(r["expiring_batches"]),
            "YES" if r["needs_reorder"] else "NO",
        ])

    for col in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18
    ws.freeze_panes = "A2"

    wb.save(fp)


def build_expiring_batches_excel(fp, rows: Iterable[Dict[str, Any]]) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Expiring Batches"

    headers = ["Batch ID", "Item", "Category", "Batch No", "Qty", "Expiry Date", "Days To Expiry", "Supplier"]
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for r in rows:
        ws.append([
            r["batch_id"],
            r["item_name"],
            r["category"],
            r["batch_number"],
            int(r["quantity"]),
            r["expiry_date"],
            int(r["days_to_expiry"]),
            r.get("supplier_name") or "",
        ])

    for col in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18

    wb.save(fp)
