# FILE: app/api/routes_lab_tests.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import current_user, get_db
from app.api.response import ok
from app.core.rbac import CurrentUser, UserRole, require_any
from app.schemas.lab import LabTestCreate, LabTestOut, LabTestUpdate
from app.services import lab as lab_svc

router = APIRouter(prefix="/lab-tests", tags=["lab-tests"])

R_VIEW = [UserRole.ADMIN, UserRole.CLINICAL_OFFICER, UserRole.LAB_TECHNICIAN]
R_MANAGE = [UserRole.ADMIN]


@router.get("")
def list_tests(
    category: Optional[str] = Query(None, max_length=100),
    search: Optional[str] = Query(None, max_length=100),
    active_only: bool = Query(True),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    if search:
        rows = lab_svc.search_tests(db, search=search, category=category, active_only=active_only)
    elif category:
        rows = lab_svc.list_tests_by_category(db, category, active_only=active_only)
    else:
        rows = lab_svc.list_tests(db, active_only=active_only)
    return ok([LabTestOut.model_validate(t) for t in rows])


@router.get("/available")
def available_tests(
    search: Optional[str] = Query(None, max_length=100),
    category: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    rows = lab_svc.search_tests(db, search=search, category=category, active_only=True)
    return ok([LabTestOut.model_validate(t) for t in rows])


@router.get("/categories")
def categories(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return ok(lab_svc.list_categories(db))


@router.get("/{test_id}")
def get_test(
    test_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_VIEW)
    return ok(LabTestOut.model_validate(lab_svc.get_test(db, test_id)))


@router.post("")
def create_test(
    payload: LabTestCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    t = lab_svc.create_test(db, payload.model_dump())
    return ok(LabTestOut.model_validate(t), message="Lab test created", status_code=201)


@router.put("/{test_id}")
def update_test(
    test_id: int,
    payload: LabTestUpdate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    t = lab_svc.update_test(db, test_id, payload.model_dump(exclude_unset=True))
    return ok(LabTestOut.model_validate(t), message="Lab test updated")


@router.delete("/{test_id}")
def delete_test(
    test_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_MANAGE)
    lab_svc.delete_test(db, test_id)
    return ok(message="Lab test deleted")
