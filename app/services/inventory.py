# FILE: app/services/inventory.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import BusinessRuleError, ConflictError, NotFoundError
from app.models.inventory import (
    InventoryBatch,
    InventoryItem,
    OUTBOUND_MOVEMENTS,
    InventoryMovement,
    MovementType,
)

logger = logging.getLogger(__name__)

DUPLICATE_BATCH_MSG = "Batch number already exists for this item"
DUPLICATE_ITEM_MSG = "An inventory item with this name already exists"
BATCH_NOT_FOUND_MSG = "Batch not found"
INSUFFICIENT_STOCK_MSG = "Insufficient stock in batch"
DISPENSED_MSG = "Dispensed successfully"


@dataclass
class DispenseResult:
    success: bool
    message: str
    batch: Optional[InventoryBatch] = None
    code: str = "ok"  # ok | not_found | insufficient_stock


# =========================================================
# Items
# =========================================================
def _item_name_taken(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(InventoryItem.id).filter(func.lower(InventoryItem.name) == name.strip().lower())
    if exclude_id is not None:
        q = q.filter(InventoryItem.id != exclude_id)
    return q.first() is not None


def create_item(db: Session, data: Dict[str, Any]) -> InventoryItem:
    name = (data.get("name") or "").strip()
    if _item_name_taken(db, name):
        raise ConflictError(DUPLICATE_ITEM_MSG)

    item = InventoryItem(**{**data, "name": name})
    db.add(item)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_ITEM_MSG)
    db.refresh(item)
    return item


def get_item(db: Session, item_id: int) -> InventoryItem:
    item = db.get(InventoryItem, item_id)
    if not item:
        raise NotFoundError("Inventory item not found")
    return item


def update_item(db: Session, item_id: int, changes: Dict[str, Any]) -> InventoryItem:
    """Partial update. is_active=False is the logical delete."""
    item = get_item(db, item_id)

    if "name" in changes and changes["name"] is not None:
        changes["name"] = changes["name"].strip()
        if _item_name_taken(db, changes["name"], exclude_id=item.id):
            raise ConflictError(DUPLICATE_ITEM_MSG)

    for k, v in changes.items():
        if v is not None:
            setattr(item, k, v)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_ITEM_MSG)
    db.refresh(item)
    return item


def list_items(db: Session, *, page: int = 1, limit: int = 20) -> Tuple[List[InventoryItem], int]:
    q = db.query(InventoryItem).filter(InventoryItem.is_active.is_(True))
    total = q.count()
    rows = (q.order_by(InventoryItem.name.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all())
    return rows, total


def search_items(
    db: Session, term: str, *, page: int = 1, limit: int = 20,
) -> Tuple[List[InventoryItem], int]:
    like = f"%{term.strip()}%"
    q = db.query(InventoryItem).filter(
        InventoryItem.is_active.is_(True),
        (InventoryItem.name.ilike(like) | InventoryItem.generic_name.ilike(like)),
    )
    total = q.count()
    rows = (q.order_by(InventoryItem.name.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all())
    return rows, total


def get_item_detail(db: Session, item_id: int, *, movement_limit: int = 20) -> Dict[str, Any]:
    item = get_item(db, item_id)
    batches = (db.query(InventoryBatch)
               .filter(InventoryBatch.inventory_item_id == item.id, InventoryBatch.quantity > 0)
               .order_by(InventoryBatch.expiry_date.asc(), InventoryBatch.id.asc())
               .all())
    return {
        "item": item,
        "batches": batches,
        "recent_movements": list_item_movements(db, item.id, limit=movement_limit),
    }


def list_item_movements(db: Session, item_id: int, *, limit: int = 50) -> List[InventoryMovement]:
    return (db.query(InventoryMovement)
            .filter(InventoryMovement.inventory_item_id == item_id)
            .order_by(InventoryMovement.performed_at.desc(), InventoryMovement.id.desc())
            .limit(limit)
            .all())


# =========================================================
# Ledger
# =========================================================
def create_stock_movement(
    db: Session,
    *,
    item_id: int,
    batch_id: Optional[int],
    movement_type: MovementType,
    quantity: int,
    unit_cost: Optional[Decimal] = None,
    reference: Optional[str] = None,
    performed_by: Optional[int] = None,
    notes: Optional[str] = None,
) -> InventoryMovement:
    """
    Central creator for ledger rows; every change to batch.quantity goes through here.
    quantity is a magnitude except for ADJUST, where it is the signed delta.
    """
    mv = InventoryMovement(
        inventory_item_id=item_id,
        batch_id=batch_id,
        movement_type=movement_type.value,
        quantity=int(quantity),
        unit_cost=unit_cost,
        reference=reference,
        performed_by=performed_by,
        notes=notes,
    )
    db.add(mv)
    return mv


def batch_for_update(batch_id: int):
    """SELECT ... FOR UPDATE on one batch row."""
    return select(InventoryBatch).where(InventoryBatch.id == batch_id).with_for_update()


def _lock_batch(db: Session, batch_id: int) -> Optional[InventoryBatch]:
    return db.execute(batch_for_update(batch_id)).scalars().first()


def create_batch(
    db: Session,
    *,
    item_id: int,
    batch_number: str,
    quantity: int,
    unit_cost: Decimal,
    selling_price: Decimal,
    expiry_date: date,
    supplier_name: Optional[str] = None,
    received_by: Optional[int] = None,
) -> InventoryBatch:
    """
    Receive a new batch. The batch row and its RECEIVE movement commit together.
    """
    if quantity is None or int(quantity) <= 0:
        raise BusinessRuleError("Quantity must be greater than zero")

    batch_number = batch_number.strip()
    try:
        item = db.get(InventoryItem, item_id)
        if not item or not item.is_active:
            raise NotFoundError("Inventory item not found")

        exists = (db.query(InventoryBatch.id)
                  .filter(InventoryBatch.inventory_item_id == item_id,
                          InventoryBatch.batch_number == batch_number)
                  .first())
        if exists:
            raise ConflictError(DUPLICATE_BATCH_MSG)

        batch = InventoryBatch(
            inventory_item_id=item_id,
            batch_number=batch_number,
            quantity=int(quantity),
            original_quantity=int(quantity),
            unit_cost=unit_cost,
            selling_price=selling_price,
            expiry_date=expiry_date,
            supplier_name=supplier_name,
            received_date=date.today(),
            received_by=received_by,
        )
        db.add(batch)
        db.flush()

        create_stock_movement(
            db,
            item_id=item_id,
            batch_id=batch.id,
            movement_type=MovementType.RECEIVE,
            quantity=int(quantity),
            unit_cost=unit_cost,
            performed_by=received_by,
            notes=f"Received batch {batch_number}",
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_BATCH_MSG)
    except Exception:
        db.rollback()
        raise

    db.refresh(batch)
    logger.info("Received batch %s for item %s qty=%s", batch.batch_number, item_id, batch.quantity)
    return batch


def dispense_from_batch(
    db: Session,
    *,
    batch_id: int,
    quantity: int,
    performed_by: Optional[int],
    reference: Optional[str] = None,
) -> DispenseResult:
    """
    Take stock out of one batch under a row lock.
    All-or-nothing: a short batch is left untouched.
    """
    if quantity is None or int(quantity) <= 0:
        raise BusinessRuleError("Quantity must be greater than zero")

    try:
        batch = _lock_batch(db, batch_id)
        if not batch:
            db.rollback()
            return DispenseResult(False, BATCH_NOT_FOUND_MSG, code="not_found")

        if int(batch.quantity) < int(quantity):
            db.rollback()
            return DispenseResult(False, INSUFFICIENT_STOCK_MSG, code="insufficient_stock")

        batch.quantity = int(batch.quantity) - int(quantity)
        create_stock_movement(
            db,
            item_id=batch.inventory_item_id,
            batch_id=batch.id,
            movement_type=MovementType.DISPENSE,
            quantity=int(quantity),
            unit_cost=batch.selling_price,
            reference=reference,
            performed_by=performed_by,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(batch)
    logger.info("Dispensed %s from batch %s (left %s) ref=%s", quantity, batch.id, batch.quantity, reference)
    return DispenseResult(True, DISPENSED_MSG, batch=batch)


def adjust_batch(
    db: Session,
    *,
    batch_id: int,
    movement_type: MovementType,
    quantity: int,
    performed_by: Optional[int],
    notes: Optional[str] = None,
) -> InventoryBatch:
    """
    ADJUST: quantity is a signed delta (stock count correction).
    EXPIRE: quantity is a positive amount written off.
    """
    movement_type = MovementType(movement_type)
    if movement_type not in (MovementType.ADJUST, MovementType.EXPIRE):
        raise BusinessRuleError("Only ADJUST or EXPIRE movements can be recorded here")

    qty = int(quantity)
    if qty == 0:
        raise BusinessRuleError("Quantity must not be zero")
    if movement_type == MovementType.EXPIRE and qty < 0:
        raise BusinessRuleError("Expired quantity must be positive")

    delta = qty if movement_type == MovementType.ADJUST else -qty

    try:
        batch = _lock_batch(db, batch_id)
        if not batch:
            raise NotFoundError(BATCH_NOT_FOUND_MSG)

        new_qty = int(batch.quantity) + delta
        if new_qty < 0:
            raise BusinessRuleError(INSUFFICIENT_STOCK_MSG)
        if new_qty > int(batch.original_quantity):
            raise BusinessRuleError("Adjusted quantity cannot exceed the received quantity")

        batch.quantity = new_qty
        create_stock_movement(
            db,
            item_id=batch.inventory_item_id,
            batch_id=batch.id,
            movement_type=movement_type,
            quantity=qty,
            unit_cost=batch.unit_cost,
            performed_by=performed_by,
            notes=notes,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(batch)
    logger.info("%s batch %s by %s (now %s)", movement_type.value, batch.id, delta, batch.quantity)
    return batch


def ledger_quantity(db: Session, batch_id: int) -> int:
    """Sum of signed movement effects for one batch."""
    outbound = [m.value for m in OUTBOUND_MOVEMENTS]
    signed = case(
        (InventoryMovement.movement_type.in_(outbound), -InventoryMovement.quantity),
        else_=InventoryMovement.quantity,
    )
    total = (db.query(func.coalesce(func.sum(signed), 0))
             .filter(InventoryMovement.batch_id == batch_id)
             .scalar())
    return int(total or 0)


def reconcile_batch(db: Session, batch_id: int) -> Dict[str, Any]:
    batch = db.get(InventoryBatch, batch_id)
    if not batch:
        raise NotFoundError(BATCH_NOT_FOUND_MSG)

    ledger = ledger_quantity(db, batch.id)
    balanced = ledger == int(batch.quantity)
    if not balanced:
        logger.warning("Batch %s out of balance: quantity=%s ledger=%s", batch.id, batch.quantity, ledger)
    return {
        "batch_id": batch.id,
        "quantity": int(batch.quantity),
        "original_quantity": int(batch.original_quantity),
        "ledger_quantity": ledger,
        "balanced": balanced,
    }


# =========================================================
# Reports (read only)
# =========================================================
def get_stock_levels(db: Session, *, today: Optional[date] = None) -> List[Dict[str, Any]]:
    today = today or date.today()
    alert_until = today + timedelta(days=settings.EXPIRY_ALERT_DAYS)

    total_qty = func.coalesce(func.sum(InventoryBatch.quantity), 0)
    expiring = func.count(case((InventoryBatch.expiry_date <= alert_until, InventoryBatch.id)))

    rows = (db.query(
        InventoryItem,
        total_qty.label("total_quantity"),
        func.count(InventoryBatch.id).label("batch_count"),
        expiring.label("expiring_batches"),
    ).outerjoin(
        InventoryBatch,
        and_(InventoryBatch.inventory_item_id == InventoryItem.id, InventoryBatch.quantity > 0),
    ).filter(InventoryItem.is_active.is_(True)).group_by(InventoryItem.id).all())

    out: List[Dict[str, Any]] = []
    for item, total, batch_count, expiring_count in rows:
        total = int(total or 0)
        out.append({
            "item_id": item.id,
            "name": item.name,
            "generic_name": item.generic_name,
            "category": item.category,
            "unit": item.unit,
            "reorder_level": int(item.reorder_level or 0),
            "max_level": int(item.max_level or 0),
            "total_quantity": total,
            "batch_count": int(batch_count or 0),
            "expiring_batches": int(expiring_count or 0),
            "needs_reorder": total <= int(item.reorder_level or 0),
        })

    out.sort(key=lambda r: (not r["needs_reorder"], r["name"].lower()))
    return out


def get_expiring_batches(db: Session, days: int = 30, *, today: Optional[date] = None) -> List[Dict[str, Any]]:
    if days < 1 or days > 365:
        raise BusinessRuleError("days must be between 1 and 365")

    today = today or date.today()
    until = today + timedelta(days=days)

    rows = (db.query(InventoryBatch, InventoryItem)
            .join(InventoryItem, InventoryItem.id == InventoryBatch.inventory_item_id)
            .filter(
                InventoryBatch.quantity > 0,
                InventoryBatch.expiry_date <= until,
                InventoryItem.is_active.is_(True),
            )
            .order_by(InventoryBatch.expiry_date.asc(), InventoryBatch.id.asc())
            .all())

    return [{
        "batch_id": b.id,
        "item_id": i.id,
        "item_name": i.name,
        "category": i.category,
        "batch_number": b.batch_number,
        "quantity": int(b.quantity),
        "expiry_date": b.expiry_date,
        "days_to_expiry": (b.expiry_date - today).days,
        "supplier_name": b.supplier_name,
    } for b, i in rows]


def get_available_stock(
    db: Session,
    *,
    search: Optional[str] = None,
    category: Optional[str] = None,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """Items that can be prescribed now: only unexpired quantity counts."""
    today = today or date.today()
    alert_until = today + timedelta(days=settings.EXPIRY_ALERT_DAYS)

    available = func.coalesce(
        func.sum(case((InventoryBatch.expiry_date > today, InventoryBatch.quantity), else_=0)), 0)
    expiring = func.count(case((InventoryBatch.expiry_date <= alert_until, InventoryBatch.id)))

    q = (db.query(
        InventoryItem,
        available.label("available_quantity"),
        func.min(InventoryBatch.selling_price).label("selling_price"),
        expiring.label("expiring_batches"),
    ).join(
        InventoryBatch,
        and_(InventoryBatch.inventory_item_id == InventoryItem.id, InventoryBatch.quantity > 0),
    ).filter(InventoryItem.is_active.is_(True)))

    if search:
        like = f"%{search.strip()}%"
        q = q.filter(InventoryItem.name.ilike(like) | InventoryItem.generic_name.ilike(like))
    if category:
        q = q.filter(InventoryItem.category == category)

    rows = (q.group_by(InventoryItem.id)
            .having(available > 0)
            .order_by(InventoryItem.name.asc())
            .all())

    return [{
        "item_id": item.id,
        "name": item.name,
        "generic_name": item.generic_name,
        "category": item.category,
        "unit": item.unit,
        "available_quantity": int(qty or 0),
        "selling_price": price,
        "has_expiring_stock": int(expiring_count or 0) > 0,
    } for item, qty, price, expiring_count in rows]
