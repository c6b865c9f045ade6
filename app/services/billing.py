# FILE: app/services/billing.py
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.core.errors import BusinessRuleError, NotFoundError
from app.models.billing import (
    AGING_BUCKETS,
    AccountsReceivable,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
    Payment,
    PaymentMethod,
    ReceivableStatus,
)
from app.services.billing_calc import (
    _d,
    _q2,
    aging_bucket,
    compute_totals,
    derive_invoice_status,
    invoice_balance,
    line_total,
)
from app.services.billing_numbers import next_invoice_number, next_payment_number
from app.utils.timezone import local_day_bounds, local_today

logger = logging.getLogger(__name__)


# =========================================================
# Invoices
# =========================================================
def create_invoice(
    db: Session,
    *,
    items: Iterable[Dict[str, Any]],
    discount_amount: Any = 0,
    payment_terms: str = "immediate",
    op_number: Optional[str] = None,
    patient_id: Optional[int] = None,
    buyer_name: Optional[str] = None,
    buyer_phone: Optional[str] = None,
    notes: Optional[str] = None,
    created_by: Optional[int] = None,
    vat_rate: Any = None,
    today: Optional[date] = None,
) -> Invoice:
    """
    Invoice, its lines and its receivable row are written in one transaction.
    """
    items = list(items or [])
    if not items:
        raise BusinessRuleError("Invoice must have at least one item")

    # quantity defaults to 1 for both the totals and the stored lines
    lines = [
        {**it, "quantity": _d(it.get("quantity") or 1), "unit_price": _q2(it.get("unit_price"))}
        for it in items
    ]

    rate = settings.BILLING_VAT_RATE if vat_rate is None else _d(vat_rate)
    totals = compute_totals(lines, discount_amount, rate)
    if totals.discount_amount < 0:
        raise BusinessRuleError("Discount cannot be negative")
    if totals.total_amount < 0:
        raise BusinessRuleError("Discount cannot exceed the invoice amount")

    inv_date = today or local_today()
    due = inv_date + timedelta(days=int(settings.INVOICE_DUE_DAYS))

    try:
        inv = Invoice(
            invoice_number=next_invoice_number(db),
            op_number=op_number,
            patient_id=patient_id,
            buyer_name=buyer_name,
            buyer_phone=buyer_phone,
            invoice_date=inv_date,
            due_date=due,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            discount_amount=totals.discount_amount,
            total_amount=totals.total_amount,
            amount_paid=Decimal("0.00"),
            balance=totals.total_amount,
            status=derive_invoice_status(totals.total_amount, 0),
            payment_terms=payment_terms or "immediate",
            notes=notes,
            created_by=created_by,
        )
        db.add(inv)
        db.flush()

        for it in lines:
            inv.items.append(InvoiceItem(
                item_type=it.get("item_type") or "other",
                item_id=it.get("item_id"),
                description=it["description"],
                quantity=it["quantity"],
                unit_price=it["unit_price"],
                total_price=line_total(it["quantity"], it["unit_price"]),
                batch_id=it.get("batch_id"),
            ))

        if totals.total_amount > 0:
            db.add(AccountsReceivable(
                invoice=inv,
                op_number=op_number,
                patient_id=patient_id,
                amount=totals.total_amount,
                remaining_amount=totals.total_amount,
                due_date=due,
                days_overdue=0,
                aging_bucket=AGING_BUCKETS[0],
                status=ReceivableStatus.CURRENT.value,
            ))

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(inv)
    logger.info("Invoice %s created total=%s", inv.invoice_number, inv.total_amount)
    return inv


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    inv = (db.query(Invoice)
           .options(selectinload(Invoice.items), selectinload(Invoice.payments))
           .filter(Invoice.id == invoice_id)
           .first())
    if not inv:
        raise NotFoundError("Invoice not found")
    return inv


def list_invoices(
    db: Session,
    *,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    patient_id: Optional[int] = None,
    op_number: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Tuple[List[Invoice], int]:
    q = db.query(Invoice)
    if status:
        q = q.filter(Invoice.status == status)
    if patient_id is not None:
        q = q.filter(Invoice.patient_id == patient_id)
    if op_number:
        q = q.filter(Invoice.op_number == op_number)
    if start_date:
        q = q.filter(Invoice.invoice_date >= start_date)
    if end_date:
        q = q.filter(Invoice.invoice_date <= end_date)

    total = q.count()
    rows = (q.order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all())
    return rows, total


def list_invoice_payments(db: Session, invoice_id: int) -> List[Payment]:
    if not db.get(Invoice, invoice_id):
        raise NotFoundError("Invoice not found")
    return (db.query(Payment)
            .filter(Payment.invoice_id == invoice_id)
            .order_by(Payment.received_at.asc(), Payment.id.asc())
            .all())


# =========================================================
# Payments & reconciliation
# =========================================================
def lock_invoice(db: Session, invoice_id: int) -> Invoice:
    inv = (db.query(Invoice)
           .filter(Invoice.id == invoice_id)
           .with_for_update()
           .first())
    if not inv:
        raise NotFoundError("Invoice not found")
    return inv


def reconcile_invoice(db: Session, inv: Invoice, *, today: Optional[date] = None) -> Invoice:
    """
    Recompute amount_paid / balance / status from the payment rows and
    bring the receivable row in line. Caller owns the transaction.
    """
    db.flush()
    today = today or local_today()

    total_paid = _q2(
        db.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.invoice_id == inv.id)
        .scalar())

    total = _q2(inv.total_amount)
    inv.amount_paid = total_paid
    inv.balance = invoice_balance(total, total_paid)
    inv.status = derive_invoice_status(total, total_paid)

    ar = db.query(AccountsReceivable).filter(AccountsReceivable.invoice_id == inv.id).first()
    if ar:
        ar.remaining_amount = inv.balance
        if inv.status == InvoiceStatus.PAID.value:
            ar.status = ReceivableStatus.PAID.value
        elif inv.status == InvoiceStatus.PARTIAL.value:
            ar.status = ReceivableStatus.PARTIAL.value
        else:
            ar.status = ReceivableStatus.CURRENT.value

        overdue = max(0, (today - ar.due_date).days)
        ar.days_overdue = overdue
        ar.aging_bucket = aging_bucket(overdue)

    db.flush()
    return inv


def add_payment(
    db: Session,
    inv: Invoice,
    *,
    amount: Any,
    method: str,
    payment_reference: Optional[str] = None,
    mpesa_receipt: Optional[str] = None,
    mpesa_transaction_id: Optional[str] = None,
    notes: Optional[str] = None,
    received_by: Optional[int] = None,
) -> Payment:
    """Insert one payment row and reconcile. inv must already be locked."""
    amt = _q2(amount)
    if amt <= 0:
        raise BusinessRuleError("Payment amount must be greater than zero")

    method = PaymentMethod(method).value
    pay = Payment(
        invoice=inv,
        payment_reference=payment_reference or next_payment_number(db),
        payment_method=method,
        amount=amt,
        mpesa_receipt=mpesa_receipt,
        mpesa_transaction_id=mpesa_transaction_id,
        received_by=received_by,
        received_at=datetime.utcnow(),
        notes=notes,
        reconciled=method != PaymentMethod.CASH.value,
    )
    db.add(pay)
    db.flush()

    reconcile_invoice(db, inv)
    return pay


def record_payment(
    db: Session,
    *,
    invoice_id: int,
    amount: Any,
    method: str,
    mpesa_receipt: Optional[str] = None,
    notes: Optional[str] = None,
    received_by: Optional[int] = None,
) -> Payment:
    try:
        inv = lock_invoice(db, invoice_id)
        pay = add_payment(
            db,
            inv,
            amount=amount,
            method=method,
            mpesa_receipt=mpesa_receipt,
            notes=notes,
            received_by=received_by,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(pay)
    logger.info(
        "Payment %s of %s on invoice %s (%s) -> %s",
        pay.payment_reference, pay.amount, inv.invoice_number, pay.payment_method, inv.status,
    )
    return pay


# =========================================================
# Dashboard (read only)
# =========================================================
def get_financial_dashboard(db: Session, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    today = local_today(now)
    day_start, day_end = local_day_bounds(today)

    today_sum, today_count = (db.query(
        func.coalesce(func.sum(Payment.amount), 0),
        func.count(Payment.id),
    ).filter(Payment.received_at >= day_start, Payment.received_at < day_end).one())

    buckets: Dict[str, Decimal] = {b: Decimal("0.00") for b in AGING_BUCKETS}
    open_rows = (db.query(AccountsReceivable.remaining_amount, AccountsReceivable.due_date)
                 .filter(AccountsReceivable.status != ReceivableStatus.PAID.value)
                 .all())
    for remaining, due in open_rows:
        overdue = max(0, (today - due).days)
        key = aging_bucket(overdue)
        buckets[key] = _q2(buckets[key] + _d(remaining))

    recent = (db.query(Payment, Invoice.invoice_number, Invoice.op_number)
              .join(Invoice, Invoice.id == Payment.invoice_id)
              .order_by(Payment.received_at.desc(), Payment.id.desc())
              .limit(10)
              .all())

    return {
        "today_revenue": _q2(today_sum),
        "today_payment_count": int(today_count or 0),
        "receivables": buckets,
        "receivables_total": _q2(sum(buckets.values(), Decimal("0"))),
        "recent_payments": [{
            "id": p.id,
            "payment_reference": p.payment_reference,
            "payment_method": p.payment_method,
            "amount": _q2(p.amount),
            "received_at": p.received_at,
            "invoice_number": inv_no,
            "op_number": op_no,
        } for p, inv_no, op_no in recent],
    }
