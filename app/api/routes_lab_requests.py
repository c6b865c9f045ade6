# FILE: app/api/routes_lab_requests.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import current_user, get_db
from app.api.response import ok
from app.core.rbac import CurrentUser, UserRole, require_any
from app.models.lab import LabStatus, LabUrgency
from app.schemas.lab import (
    LabRequestCreate,
    LabRequestItemOut,
    LabRequestItemStatusIn,
    LabRequestOut,
    LabRequestStatusIn,
)
from app.services import lab as lab_svc

router = APIRouter(prefix="/lab-requests", tags=["lab-requests"])

R_VIEW = [UserRole.ADMIN, UserRole.CLINICAL_OFFICER, UserRole.LAB_TECHNICIAN]
R_CREATE = [UserRole.ADMIN, UserRole.CLINICAL_OFFICER]
R_PROCESS = [UserRole.ADMIN, UserRole.LAB_TECHNICIAN]


def _many(rows):
    return ok([LabRequestOut.model_validate(r) for r in rows])


@router.get("")
def list_requests(
    status: Optional[LabStatus] = Query(None),
    urgency: Optional[LabUrgency] = Query(None),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return _many(lab_svc.list_requests(
        db,
        status=status.value if status else None,
        urgency=urgency.value if urgency else None,
    ))


@router.get("/pending")
def pending(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_PROCESS)
    return _many(lab_svc.list_pending(db))


@router.get("/completed")
def completed(
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return _many(lab_svc.list_completed(db, start=start_date, end=end_date))


@router.get("/patient/{patient_id}")
def by_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return _many(lab_svc.list_by_patient(db, patient_id))


@router.get("/visit/{visit_id}")
def by_visit(
    visit_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return _many(lab_svc.list_by_visit(db, visit_id))


@router.get("/{request_id}")
def get_request(
    request_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return ok(LabRequestOut.model_validate(lab_svc.get_request(db, request_id)))


@router.get("/{request_id}/items")
def request_items(
    request_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    rows = lab_svc.list_request_items(db, request_id)
    return ok([LabRequestItemOut.model_validate(i) for i in rows])


@router.post("")
def create_request(
    payload: LabRequestCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_CREATE)
    req = lab_svc.create_request(
        db,
        visit_id=payload.visit_id,
        patient_id=payload.patient_id,
        items=[it.model_dump() for it in payload.items],
        urgency=payload.urgency.value,
        clinical_notes=payload.clinical_notes,
        expected_completion_at=payload.expected_completion_at,
        requested_by=user.id,
    )
    return ok(LabRequestOut.model_validate(req), message="Lab request created", status_code=201)


@router.patch("/{request_id}/status")
def update_status(
    request_id: int,
    payload: LabRequestStatusIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_PROCESS)
    req = lab_svc.update_request_status(
        db,
        request_id,
        payload.status.value,
        specimen_collected_at=payload.specimen_collected_at,
        performed_by=user.id,
    )
    return ok(LabRequestOut.model_validate(req), message="Lab request status updated")


@router.patch("/items/{item_id}")
def update_item(
    item_id: int,
    payload: LabRequestItemStatusIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_PROCESS)
    item = lab_svc.update_item_status(
        db,
        item_id,
        payload.status.value,
        result_data=payload.result_data,
        abnormal_flags=payload.abnormal_flags,
        technician_notes=payload.technician_notes,
        performed_by=user.id,
    )
    return ok(LabRequestItemOut.model_validate(item), message="Lab request item updated")
