# FILE: app/api/routes_inventory.py
from __future__ import annotations

import logging
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db, current_user
from app.api.response import ok, err
from app.core.rbac import CurrentUser, UserRole, require_any
from app.models.inventory import MovementType
from app.schemas.common import page_meta
from app.schemas.inventory import (
    AvailableStockOut,
    BatchAdjustIn,
    BatchCreate,
    BatchOut,
    BatchReconcileOut,
    DispenseIn,
    ExpiringBatchOut,
    InventoryItemCreate,
    InventoryItemDetail,
    InventoryItemOut,
    InventoryItemPage,
    InventoryItemUpdate,
    MovementOut,
    StockLevelOut,
)
from app.services import inventory as inv_svc
from app.services.excel_export import build_expiring_batches_excel, build_stock_levels_excel

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/inventory", tags=["inventory"])

R_VIEW = [UserRole.ADMIN, UserRole.INVENTORY_MANAGER, UserRole.PHARMACIST]
R_MANAGE = [UserRole.ADMIN, UserRole.INVENTORY_MANAGER]
R_DISPENSE = [UserRole.ADMIN, UserRole.PHARMACIST]
R_AVAILABLE = [UserRole.ADMIN, UserRole.CLINICAL_OFFICER, UserRole.PHARMACIST]

XLSX_MEDIA = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _xlsx(buf: BytesIO, filename: str) -> StreamingResponse:
    buf.seek(0)
    return StreamingResponse(
        buf,
        media_type=XLSX_MEDIA,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# =========================
# ITEMS
# =========================
@router.get("/items")
def list_items(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    search: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    if search:
        rows, total = inv_svc.search_items(db, search, page=page, limit=limit)
    else:
        rows, total = inv_svc.list_items(db, page=page, limit=limit)

    out = InventoryItemPage(
        items=[InventoryItemOut.model_validate(r) for r in rows],
        meta=page_meta(page, limit, total),
    )
    return ok(out)


@router.post("/items")
def create_item(
    payload: InventoryItemCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    item = inv_svc.create_item(db, payload.model_dump())
    return ok(InventoryItemOut.model_validate(item), message="Inventory item created", status_code=201)


@router.get("/items/{item_id}")
def get_item(
    item_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    d = inv_svc.get_item_detail(db, item_id)
    out = InventoryItemDetail(
        item=InventoryItemOut.model_validate(d["item"]),
        batches=[BatchOut.model_validate(b) for b in d["batches"]],
        recent_movements=[MovementOut.model_validate(m) for m in d["recent_movements"]],
    )
    return ok(out)


@router.put("/items/{item_id}")
def update_item(
    item_id: int,
    payload: InventoryItemUpdate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    item = inv_svc.update_item(db, item_id, payload.model_dump(exclude_unset=True))
    return ok(InventoryItemOut.model_validate(item), message="Inventory item updated")


@router.get("/items/{item_id}/movements")
def item_movements(
    item_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    inv_svc.get_item(db, item_id)
    rows = inv_svc.list_item_movements(db, item_id, limit=limit)
    return ok([MovementOut.model_validate(m) for m in rows])


# =========================
# BATCHES
# =========================
@router.post("/batches")
def receive_batch(
    payload: BatchCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    batch = inv_svc.create_batch(
        db,
        item_id=payload.inventory_item_id,
        batch_number=payload.batch_number,
        quantity=payload.quantity,
        unit_cost=payload.unit_cost,
        selling_price=payload.selling_price,
        expiry_date=payload.expiry_date,
        supplier_name=payload.supplier_name,
        received_by=user.id,
    )
    return ok(BatchOut.model_validate(batch), message="Batch received", status_code=201)


@router.post("/batches/{batch_id}/adjust")
def adjust_batch(
    batch_id: int,
    payload: BatchAdjustIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    batch = inv_svc.adjust_batch(
        db,
        batch_id=batch_id,
        movement_type=MovementType(payload.movement_type),
        quantity=payload.quantity,
        performed_by=user.id,
        notes=payload.notes,
    )
    return ok(BatchOut.model_validate(batch), message="Batch adjusted")


@router.get("/batches/{batch_id}/reconcile")
def reconcile_batch(
    batch_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    return ok(BatchReconcileOut(**inv_svc.reconcile_batch(db, batch_id)))


@router.post("/dispense")
def dispense(
    payload: DispenseIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_DISPENSE)
    res = inv_svc.dispense_from_batch(
        db,
        batch_id=payload.batch_id,
        quantity=payload.quantity,
        performed_by=user.id,
        reference=payload.reference,
    )
    if not res.success:
        logger.info("Dispense rejected batch=%s qty=%s: %s", payload.batch_id, payload.quantity, res.message)
        return err(res.message, status_code=404 if res.code == "not_found" else 400)
    return ok(BatchOut.model_validate(res.batch), message=res.message)


# =========================
# REPORTS
# =========================
@router.get("/stock-levels")
def stock_levels(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    rows = inv_svc.get_stock_levels(db)
    return ok([StockLevelOut(**r) for r in rows])


@router.get("/stock-levels/export")
def export_stock_levels(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    buf = BytesIO()
    build_stock_levels_excel(buf, inv_svc.get_stock_levels(db))
    return _xlsx(buf, "stock_levels.xlsx")


@router.get("/expiring")
def expiring_batches(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    rows = inv_svc.get_expiring_batches(db, days)
    return ok([ExpiringBatchOut(**r) for r in rows])


@router.get("/expiring/export")
def export_expiring_batches(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    buf = BytesIO()
    build_expiring_batches_excel(buf, inv_svc.get_expiring_batches(db, days))
    return _xlsx(buf, f"expiring_batches_{days}d.xlsx")


@router.get("/available-stock")
def available_stock(
    search: Optional[str] = Query(None, max_length=100),
    category: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_AVAILABLE)
    rows = inv_svc.get_available_stock(db, search=search, category=category)
    return ok([AvailableStockOut(**r) for r in rows])
