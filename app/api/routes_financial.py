# FILE: app/api/routes_financial.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.api.deps import current_user, get_db, get_mpesa_client
from app.api.response import ok
from app.core.errors import ClinicError
from app.core.rbac import CurrentUser, UserRole, require_any
from app.models.billing import InvoiceStatus
from app.schemas.billing import (
    FinancialDashboard,
    InvoiceCreate,
    InvoiceDetail,
    InvoiceOut,
    InvoicePage,
    PaymentCreate,
    PaymentOut,
)
from app.schemas.common import page_meta
from app.schemas.mpesa import MpesaTransactionOut, StkPushIn
from app.services import billing as billing_svc
from app.services import mpesa as mpesa_svc
from app.services.mpesa import DarajaClient
from app.services.pdf_invoice import build_invoice_pdf

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/financial", tags=["financial"])

R_BILLING = [UserRole.PHARMACIST, UserRole.CASHIER, UserRole.ADMIN]
R_DASHBOARD = [UserRole.ADMIN, UserRole.CASHIER, UserRole.PHARMACIST]


# =========================
# INVOICES
# =========================
@router.post("/invoices")
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_BILLING)
    inv = billing_svc.create_invoice(
        db,
        items=[it.model_dump() for it in payload.items],
        discount_amount=payload.discount_amount,
        payment_terms=payload.payment_terms,
        op_number=payload.op_number,
        patient_id=payload.patient_id,
        buyer_name=payload.buyer_name,
        buyer_phone=payload.buyer_phone,
        notes=payload.notes,
        created_by=user.id,
    )
    inv = billing_svc.get_invoice(db, inv.id)
    return ok(InvoiceDetail.model_validate(inv), message="Invoice created", status_code=201)


@router.get("/invoices")
def list_invoices(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    status: Optional[InvoiceStatus] = Query(None),
    patient_id: Optional[int] = Query(None),
    op_number: Optional[str] = Query(None, max_length=50),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_BILLING)
    rows, total = billing_svc.list_invoices(
        db,
        page=page,
        limit=limit,
        status=status.value if status else None,
        patient_id=patient_id,
        op_number=op_number,
        start_date=start_date,
        end_date=end_date,
    )
    return ok(InvoicePage(
        items=[InvoiceOut.model_validate(r) for r in rows],
        meta=page_meta(page, limit, total),
    ))


@router.get("/invoices/{invoice_id}")
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_BILLING)
    return ok(InvoiceDetail.model_validate(billing_svc.get_invoice(db, invoice_id)))


@router.get("/invoices/{invoice_id}/payments")
def invoice_payments(
    invoice_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_BILLING)
    rows = billing_svc.list_invoice_payments(db, invoice_id)
    return ok([PaymentOut.model_validate(p) for p in rows])


@router.get("/invoices/{invoice_id}/pdf")
def invoice_pdf(
    invoice_id: int,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_BILLING)
    inv = billing_svc.get_invoice(db, invoice_id)
    buf = build_invoice_pdf(inv)
    return StreamingResponse(
        buf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{inv.invoice_number}.pdf"'},
    )


# =========================
# PAYMENTS
# =========================
@router.post("/payments")
def record_payment(
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_BILLING)
    pay = billing_svc.record_payment(
        db,
        invoice_id=payload.invoice_id,
        amount=payload.amount,
        method=payload.payment_method.value,
        mpesa_receipt=payload.mpesa_receipt,
        notes=payload.notes,
        received_by=user.id,
    )
    inv = billing_svc.get_invoice(db, pay.invoice_id)
    return ok(
        {
            "payment": PaymentOut.model_validate(pay),
            "invoice": InvoiceOut.model_validate(inv),
        },
        message="Payment recorded",
        status_code=201,
    )


# =========================
# M-PESA
# =========================
@router.post("/mpesa/stk-push")
def stk_push(
    payload: StkPushIn,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
    client: DarajaClient = Depends(get_mpesa_client),
):
    require_any(user, R_BILLING)
    txn = mpesa_svc.initiate_stk_push(
        db,
        client,
        invoice_id=payload.invoice_id,
        phone_number=payload.phone_number,
        amount=payload.amount,
        account_reference=payload.account_reference,
        description=payload.description,
    )
    return ok(
        MpesaTransactionOut.model_validate(txn),
        message="STK push sent. Ask the customer to confirm on their phone.",
    )


@router.post("/mpesa/callback")
def mpesa_callback(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
):
    """Daraja webhook. Unauthenticated; safe to deliver more than once."""
    try:
        result = mpesa_svc.handle_callback(db, payload)
    except ClinicError as e:
        logger.warning("Rejected M-Pesa callback: %s", e.message)
        raise
    return ok(result, message="Callback processed")


@router.get("/mpesa/status/{checkout_request_id}")
def mpesa_status(
    checkout_request_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_BILLING)
    txn = mpesa_svc.get_transaction_status(db, checkout_request_id)
    return ok(MpesaTransactionOut.model_validate(txn))


# =========================
# DASHBOARD
# =========================
@router.get("/dashboard")
def dashboard(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(current_user),
):
    require_any(user, R_DASHBOARD)
    return ok(FinancialDashboard(**billing_svc.get_financial_dashboard(db)))
