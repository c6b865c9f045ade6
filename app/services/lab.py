# FILE: app/services/lab.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.core.errors import BusinessRuleError, ConflictError, NotFoundError
from app.models.lab import (
    OPEN_LAB_STATUSES,
    LabRequest,
    LabRequestItem,
    LabStatus,
    LabTest,
    LabUrgency,
)

logger = logging.getLogger(__name__)

DUPLICATE_TEST_MSG = "A lab test with this code already exists"

# allowed next states; COMPLETED and CANCELLED are terminal
LAB_TRANSITIONS: Dict[str, set] = {
    LabStatus.REQUESTED.value: {LabStatus.SAMPLE_COLLECTED.value, LabStatus.CANCELLED.value},
    LabStatus.SAMPLE_COLLECTED.value: {LabStatus.IN_PROGRESS.value, LabStatus.CANCELLED.value},
    LabStatus.IN_PROGRESS.value: {LabStatus.COMPLETED.value, LabStatus.CANCELLED.value},
    LabStatus.COMPLETED.value: set(),
    LabStatus.CANCELLED.value: set(),
}


def ensure_transition(current: str, target: str) -> None:
    if target == current:
        return
    if target not in LAB_TRANSITIONS.get(current, set()):
        raise ConflictError(f"Cannot change status from {current} to {target}")


# =========================================================
# Test catalog
# =========================================================
def _code_taken(db: Session, code: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(LabTest.id).filter(LabTest.test_code == code)
    if exclude_id is not None:
        q = q.filter(LabTest.id != exclude_id)
    return q.first() is not None


def create_test(db: Session, data: Dict[str, Any]) -> LabTest:
    code = data["test_code"].strip().upper()
    if _code_taken(db, code):
        raise ConflictError(DUPLICATE_TEST_MSG)

    t = LabTest(**{**data, "test_code": code})
    db.add(t)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_TEST_MSG)
    db.refresh(t)
    return t


def get_test(db: Session, test_id: int) -> LabTest:
    t = db.get(LabTest, test_id)
    if not t:
        raise NotFoundError("Lab test not found")
    return t


def list_tests(db: Session, *, active_only: bool = True) -> List[LabTest]:
    q = db.query(LabTest)
    if active_only:
        q = q.filter(LabTest.is_active.is_(True))
    return q.order_by(LabTest.test_category.asc(), LabTest.test_name.asc()).all()


def list_tests_by_category(db: Session, category: str, *, active_only: bool = True) -> List[LabTest]:
    q = db.query(LabTest).filter(LabTest.test_category == category)
    if active_only:
        q = q.filter(LabTest.is_active.is_(True))
    return q.order_by(LabTest.test_name.asc()).all()


def search_tests(
    db: Session,
    *,
    search: Optional[str] = None,
    category: Optional[str] = None,
    active_only: bool = True,
) -> List[LabTest]:
    """Match on name, code or description (case-insensitive)."""
    q = db.query(LabTest)
    if active_only:
        q = q.filter(LabTest.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(
            LabTest.test_name.ilike(like)
            | LabTest.test_code.ilike(like)
            | LabTest.description.ilike(like)
        )
    if category:
        q = q.filter(LabTest.test_category == category)
    return q.order_by(LabTest.test_category.asc(), LabTest.test_name.asc()).all()


def list_categories(db: Session) -> List[str]:
    rows = (db.query(LabTest.test_category)
            .filter(LabTest.is_active.is_(True))
            .distinct()
            .order_by(LabTest.test_category.asc())
            .all())
    return [r[0] for r in rows]


def update_test(db: Session, test_id: int, changes: Dict[str, Any]) -> LabTest:
    t = get_test(db, test_id)

    if changes.get("test_code"):
        changes["test_code"] = changes["test_code"].strip().upper()
        if _code_taken(db, changes["test_code"], exclude_id=t.id):
            raise ConflictError(DUPLICATE_TEST_MSG)

    for k, v in changes.items():
        setattr(t, k, v)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(DUPLICATE_TEST_MSG)
    db.refresh(t)
    return t


def delete_test(db: Session, test_id: int) -> None:
    t = get_test(db, test_id)
    used = db.query(LabRequestItem.id).filter(LabRequestItem.test_id == t.id).first()
    if used:
        raise ConflictError("Lab test is used by lab requests; deactivate it instead")
    try:
        db.delete(t)
        db.commit()
    except Exception:
        db.rollback()
        raise


# =========================================================
# Requests
# =========================================================
def _req_query(db: Session):
    return db.query(LabRequest).options(selectinload(LabRequest.items))


def create_request(
    db: Session,
    *,
    visit_id: int,
    patient_id: int,
    items: Iterable[Dict[str, Any]],
    urgency: str = LabUrgency.ROUTINE.value,
    clinical_notes: Optional[str] = None,
    expected_completion_at: Optional[datetime] = None,
    requested_by: Optional[int] = None,
) -> LabRequest:
    items = list(items or [])
    if not items:
        raise BusinessRuleError("Lab request must have at least one test")

    try:
        req = LabRequest(
            visit_id=visit_id,
            patient_id=patient_id,
            requested_by=requested_by,
            clinical_notes=clinical_notes,
            urgency=LabUrgency(urgency).value,
            status=LabStatus.REQUESTED.value,
            expected_completion_at=expected_completion_at,
            requested_at=datetime.utcnow(),
        )
        db.add(req)
        db.flush()

        for it in items:
            test = db.get(LabTest, it["test_id"])
            if not test:
                raise NotFoundError(f"Lab test {it['test_id']} not found")
            if not test.is_active:
                raise BusinessRuleError(f"Lab test {test.test_code} is not active")
            req.items.append(LabRequestItem(
                test_id=test.id,
                test_name=test.test_name,
                test_code=test.test_code,
                specimen_type=test.specimen_type,
                status=LabStatus.REQUESTED.value,
                clinical_notes=it.get("clinical_notes"),
                reference_ranges=test.reference_ranges,
            ))

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Lab request %s created (%s, %d tests)", req.id, req.urgency, len(items))
    return get_request(db, req.id)


def get_request(db: Session, request_id: int) -> LabRequest:
    req = _req_query(db).filter(LabRequest.id == request_id).first()
    if not req:
        raise NotFoundError("Lab request not found")
    return req


def list_requests(
    db: Session,
    *,
    status: Optional[str] = None,
    urgency: Optional[str] = None,
) -> List[LabRequest]:
    q = _req_query(db)
    if status:
        q = q.filter(LabRequest.status == status)
    if urgency:
        q = q.filter(LabRequest.urgency == urgency)
    return q.order_by(LabRequest.requested_at.desc(), LabRequest.id.desc()).all()


def list_by_patient(db: Session, patient_id: int) -> List[LabRequest]:
    return (_req_query(db)
            .filter(LabRequest.patient_id == patient_id)
            .order_by(LabRequest.requested_at.desc(), LabRequest.id.desc())
            .all())


def list_by_visit(db: Session, visit_id: int) -> List[LabRequest]:
    return (_req_query(db)
            .filter(LabRequest.visit_id == visit_id)
            .order_by(LabRequest.requested_at.desc(), LabRequest.id.desc())
            .all())


def list_pending(db: Session) -> List[LabRequest]:
    """Work queue: STAT first, then URGENT, then ROUTINE; oldest first inside each."""
    priority = case(
        (LabRequest.urgency == LabUrgency.STAT.value, 1),
        (LabRequest.urgency == LabUrgency.URGENT.value, 2),
        else_=3,
    )
    return (_req_query(db)
            .filter(LabRequest.status.in_(OPEN_LAB_STATUSES))
            .order_by(priority.asc(), LabRequest.requested_at.asc(), LabRequest.id.asc())
            .all())


def list_completed(
    db: Session,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[LabRequest]:
    q = _req_query(db).filter(LabRequest.status == LabStatus.COMPLETED.value)
    if start:
        q = q.filter(LabRequest.reported_at >= start)
    if end:
        q = q.filter(LabRequest.reported_at <= end)
    return q.order_by(LabRequest.reported_at.desc(), LabRequest.id.desc()).all()


def update_request_status(
    db: Session,
    request_id: int,
    status: str,
    *,
    specimen_collected_at: Optional[datetime] = None,
    performed_by: Optional[int] = None,
) -> LabRequest:
    target = LabStatus(status).value
    try:
        req = (db.query(LabRequest)
               .filter(LabRequest.id == request_id)
               .with_for_update()
               .first())
        if not req:
            raise NotFoundError("Lab request not found")

        ensure_transition(req.status, target)
        now = datetime.utcnow()

        if target == LabStatus.SAMPLE_COLLECTED.value:
            req.specimen_collected_at = specimen_collected_at or req.specimen_collected_at or now
            req.collected_by = performed_by
        elif target == LabStatus.COMPLETED.value:
            req.reported_at = req.reported_at or now

        req.status = target
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Lab request %s -> %s", request_id, target)
    return get_request(db, request_id)


def update_item_status(
    db: Session,
    item_id: int,
    status: str,
    *,
    result_data: Optional[Dict[str, Any]] = None,
    abnormal_flags: Optional[Dict[str, Any]] = None,
    technician_notes: Optional[str] = None,
    performed_by: Optional[int] = None,
) -> LabRequestItem:
    target = LabStatus(status).value
    try:
        item = (db.query(LabRequestItem)
                .filter(LabRequestItem.id == item_id)
                .with_for_update()
                .first())
        if not item:
            raise NotFoundError("Lab request item not found")

        ensure_transition(item.status, target)

        if result_data is not None:
            item.result_data = result_data
        if abnormal_flags is not None:
            item.abnormal_flags = abnormal_flags
        if technician_notes is not None:
            item.technician_notes = technician_notes

        if target == LabStatus.COMPLETED.value:
            now = datetime.utcnow()
            item.verified_by = performed_by
            item.verified_at = now
            item.reported_at = now

        item.status = target
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(item)
    return item


def list_request_items(db: Session, request_id: int) -> List[LabRequestItem]:
    if not db.get(LabRequest, request_id):
        raise NotFoundError("Lab request not found")
    return (db.query(LabRequestItem)
            .filter(LabRequestItem.lab_request_id == request_id)
            .order_by(LabRequestItem.id.asc())
            .all())
