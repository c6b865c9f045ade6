# FILE: app/schemas/billing.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal

from app.models.billing import PaymentMethod
from app.schemas.common import PageMeta

Money = condecimal(max_digits=12, decimal_places=2, ge=0)
PositiveMoney = condecimal(max_digits=12, decimal_places=2, gt=0)

InvoiceItemType = Literal["consultation", "medication", "lab_test", "procedure", "other"]


class InvoiceItemIn(BaseModel):
    item_type: InvoiceItemType = "other"
    item_id: Optional[int] = None
    description: str = Field(..., min_length=1, max_length=500)
    quantity: condecimal(max_digits=12, decimal_places=2, gt=0) = Decimal("1")
    unit_price: Money
    batch_id: Optional[int] = None


class InvoiceCreate(BaseModel):
    items: List[InvoiceItemIn] = Field(..., min_length=1)
    discount_amount: Money = Decimal("0")
    payment_terms: str = Field("immediate", max_length=50)

    op_number: Optional[str] = Field(None, max_length=50)
    patient_id: Optional[int] = None
    buyer_name: Optional[str] = Field(None, max_length=255)
    buyer_phone: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class InvoiceItemOut(BaseModel):
    id: int
    item_type: str
    item_id: Optional[int] = None
    description: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    batch_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentCreate(BaseModel):
    invoice_id: int
    amount: PositiveMoney
    payment_method: PaymentMethod
    mpesa_receipt: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None


class PaymentOut(BaseModel):
    id: int
    invoice_id: int
    payment_reference: str
    payment_method: str
    amount: Decimal
    mpesa_receipt: Optional[str] = None
    mpesa_transaction_id: Optional[str] = None
    received_by: Optional[int] = None
    received_at: datetime
    notes: Optional[str] = None
    reconciled: bool

    model_config = ConfigDict(from_attributes=True)


class InvoiceOut(BaseModel):
    id: int
    invoice_number: str
    op_number: Optional[str] = None
    patient_id: Optional[int] = None
    buyer_name: Optional[str] = None
    buyer_phone: Optional[str] = None
    invoice_date: date
    due_date: date
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: str
    payment_terms: str
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceDetail(InvoiceOut):
    items: List[InvoiceItemOut] = []
    payments: List[PaymentOut] = []


class InvoicePage(BaseModel):
    items: List[InvoiceOut]
    meta: PageMeta


class RecentPaymentOut(BaseModel):
    id: int
    payment_reference: str
    payment_method: str
    amount: Decimal
    received_at: datetime
    invoice_number: str
    op_number: Optional[str] = None


class FinancialDashboard(BaseModel):
    today_revenue: Decimal
    today_payment_count: int
    receivables: Dict[str, Decimal]
    receivables_total: Decimal
    recent_payments: List[RecentPaymentOut]
