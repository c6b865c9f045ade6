# FILE: app/services/prescriptions.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session, selectinload

from app.core.errors import BusinessRuleError, ConflictError, NotFoundError
from app.models.inventory import InventoryItem
from app.models.prescription import Prescription, PrescriptionItem, PrescriptionStatus

logger = logging.getLogger(__name__)


# Manual status changes; the dispensed-quantity roll-up sets status directly.
PRESCRIPTION_TRANSITIONS: Dict[str, set] = {
    PrescriptionStatus.PENDING.value: {
        PrescriptionStatus.PARTIALLY_DISPENSED.value,
        PrescriptionStatus.FULLY_DISPENSED.value,
        PrescriptionStatus.CANCELLED.value,
    },
    PrescriptionStatus.PARTIALLY_DISPENSED.value: {
        PrescriptionStatus.FULLY_DISPENSED.value,
        PrescriptionStatus.CANCELLED.value,
    },
    PrescriptionStatus.FULLY_DISPENSED.value: set(),
    PrescriptionStatus.CANCELLED.value: set(),
}


def ensure_status_transition(current: str, target: str) -> None:
    if target == current:
        return
    if target not in PRESCRIPTION_TRANSITIONS.get(current, set()):
        raise ConflictError(f"Cannot change status from {current} to {target}")


def _rx_query(db: Session):
    return db.query(Prescription).options(selectinload(Prescription.items))


def create_prescription(
    db: Session,
    *,
    visit_id: int,
    patient_id: int,
    items: Iterable[Dict[str, Any]],
    consultation_id: Optional[int] = None,
    prescribed_by: Optional[int] = None,
) -> Prescription:
    items = list(items or [])
    if not items:
        raise BusinessRuleError("Prescription must have at least one item")

    try:
        rx = Prescription(
            consultation_id=consultation_id,
            visit_id=visit_id,
            patient_id=patient_id,
            prescribed_by=prescribed_by,
            status=PrescriptionStatus.PENDING.value,
        )
        db.add(rx)
        db.flush()

        for it in items:
            if not db.get(InventoryItem, it["inventory_item_id"]):
                raise NotFoundError(f"Inventory item {it['inventory_item_id']} not found")
            rx.items.append(PrescriptionItem(
                inventory_item_id=it["inventory_item_id"],
                item_name=it["item_name"],
                dosage=it["dosage"],
                frequency=it["frequency"],
                duration=it["duration"],
                quantity_prescribed=int(it["quantity_prescribed"]),
                quantity_dispensed=0,
                instructions=it.get("instructions"),
            ))

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Prescription %s created for visit %s (%d items)", rx.id, visit_id, len(items))
    return get_prescription(db, rx.id)


def get_prescription(db: Session, prescription_id: int) -> Prescription:
    rx = _rx_query(db).filter(Prescription.id == prescription_id).first()
    if not rx:
        raise NotFoundError("Prescription not found")
    return rx


def list_by_patient(db: Session, patient_id: int) -> List[Prescription]:
    return (_rx_query(db)
            .filter(Prescription.patient_id == patient_id)
            .order_by(Prescription.created_at.desc(), Prescription.id.desc())
            .all())


def list_by_visit(db: Session, visit_id: int) -> List[Prescription]:
    return (_rx_query(db)
            .filter(Prescription.visit_id == visit_id)
            .order_by(Prescription.created_at.desc(), Prescription.id.desc())
            .all())


def update_status(db: Session, prescription_id: int, status: str) -> Prescription:
    target = PrescriptionStatus(status).value
    try:
        rx = (db.query(Prescription)
              .filter(Prescription.id == prescription_id)
              .with_for_update()
              .first())
        if not rx:
            raise NotFoundError("Prescription not found")

        ensure_status_transition(rx.status, target)
        rx.status = target
        db.commit()
    except Exception:
        db.rollback()
        raise
    return get_prescription(db, prescription_id)


def derive_prescription_status(items: Iterable[PrescriptionItem]) -> str:
    items = list(items)
    if items and all(int(i.quantity_dispensed or 0) >= int(i.quantity_prescribed) for i in items):
        return PrescriptionStatus.FULLY_DISPENSED.value
    if any(int(i.quantity_dispensed or 0) > 0 for i in items):
        return PrescriptionStatus.PARTIALLY_DISPENSED.value
    return PrescriptionStatus.PENDING.value


def update_dispensed_quantity(db: Session, item_id: int, quantity_dispensed: int) -> PrescriptionItem:
    """Set how much of one line has been handed out and roll the status up."""
    try:
        item = (db.query(PrescriptionItem)
                .filter(PrescriptionItem.id == item_id)
                .with_for_update()
                .first())
        if not item:
            raise NotFoundError("Prescription item not found")

        qty = int(quantity_dispensed)
        if qty < 0 or qty > int(item.quantity_prescribed):
            raise BusinessRuleError("Dispensed quantity must be between 0 and the prescribed quantity")

        item.quantity_dispensed = qty
        db.flush()

        rx = item.prescription
        if rx.status != PrescriptionStatus.CANCELLED.value:
            rx.status = derive_prescription_status(rx.items)

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(item)
    return item
