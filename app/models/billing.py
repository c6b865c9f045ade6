# FILE: app/models/billing.py
from __future__ import annotations

import enum
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    Date,
    DateTime,
    Index,
    ForeignKey,
    UniqueConstraint,
    Text,
)
from sqlalchemy.orm import relationship

from app.db.base import Base

Money = Numeric(12, 2)


class InvoiceStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    MPESA = "mpesa"
    BANK_TRANSFER = "bank_transfer"
    INSURANCE = "insurance"
    OTHER = "other"


class ReceivableStatus(str, enum.Enum):
    CURRENT = "current"
    PARTIAL = "partial"
    PAID = "paid"


class MpesaStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


AGING_BUCKETS = ("0-30", "31-60", "61-90", "90+")


class NumberSeries(Base):
    """
    Per-key, per-period counter for human readable document numbers.
    Rows are locked FOR UPDATE while a number is taken.
    """
    __tablename__ = "number_series"
    __table_args__ = (
        UniqueConstraint("key", "period", name="uq_number_series_key_period"),
    )

    id = Column(Integer, primary_key=True)
    key = Column(String(30), nullable=False)  # INV / PAY
    period = Column(String(10), nullable=False)  # YYYY
    next_seq = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_patient_date", "patient_id", "invoice_date"),
        Index("ix_invoices_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(32), unique=True, nullable=False, index=True)

    op_number = Column(String(50), nullable=True, index=True)
    patient_id = Column(Integer, nullable=True)
    buyer_name = Column(String(255), nullable=True)
    buyer_phone = Column(String(50), nullable=True)

    invoice_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=False)

    subtotal = Column(Money, nullable=False, default=Decimal("0.00"))
    tax_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    discount_amount = Column(Money, nullable=False, default=Decimal("0.00"))
    total_amount = Column(Money, nullable=False, default=Decimal("0.00"))

    # Always recomputed from payments, never incremented in place
    amount_paid = Column(Money, nullable=False, default=Decimal("0.00"))
    balance = Column(Money, nullable=False, default=Decimal("0.00"))

    status = Column(String(16), nullable=False, default=InvoiceStatus.UNPAID.value)  # unpaid | partial | paid
    payment_terms = Column(String(50), nullable=False, default="immediate")
    notes = Column(Text, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )
    payments = relationship(
        "Payment",
        back_populates="invoice",
        order_by="Payment.id",
    )
    receivable = relationship("AccountsReceivable", back_populates="invoice", uselist=False)


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)

    # consultation | medication | lab_test | procedure | other
    item_type = Column(String(30), nullable=False, default="other")
    item_id = Column(Integer, nullable=True)
    description = Column(String(500), nullable=False)

    quantity = Column(Numeric(12, 2), nullable=False, default=Decimal("1"))
    unit_price = Column(Money, nullable=False, default=Decimal("0.00"))
    total_price = Column(Money, nullable=False, default=Decimal("0.00"))

    batch_id = Column(Integer, ForeignKey("inventory_batches.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    invoice = relationship("Invoice", back_populates="items")


class Payment(Base):
    """Money received against exactly one invoice. Insert-only."""
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_invoice", "invoice_id"),
        Index("ix_payments_received_at", "received_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False)
    payment_reference = Column(String(50), unique=True, nullable=False)

    payment_method = Column(String(20), nullable=False)
    amount = Column(Money, nullable=False)

    mpesa_receipt = Column(String(50), nullable=True, index=True)
    mpesa_transaction_id = Column(String(100), nullable=True)

    received_by = Column(Integer, nullable=True)  # NULL = system (gateway callback)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(Text, nullable=True)
    reconciled = Column(Boolean, nullable=False, default=False)

    invoice = relationship("Invoice", back_populates="payments")


class AccountsReceivable(Base):
    __tablename__ = "accounts_receivable"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), unique=True, nullable=False)
    op_number = Column(String(50), nullable=True)
    patient_id = Column(Integer, nullable=True)

    amount = Column(Money, nullable=False)
    remaining_amount = Column(Money, nullable=False)
    due_date = Column(Date, nullable=False)
    days_overdue = Column(Integer, nullable=False, default=0)
    aging_bucket = Column(String(10), nullable=False, default="0-30")
    status = Column(String(16), nullable=False, default=ReceivableStatus.CURRENT.value)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    invoice = relationship("Invoice", back_populates="receivable")


class MpesaTransaction(Base):
    """
    One STK push attempt.
    Created pending at initiation; moved to a terminal status exactly once by the callback.
    """
    __tablename__ = "mpesa_transactions"

    id = Column(Integer, primary_key=True, index=True)
    transaction_type = Column(String(20), nullable=False, default="stk_push")

    merchant_request_id = Column(String(100), nullable=True)
    checkout_request_id = Column(String(100), unique=True, nullable=False, index=True)

    phone_number = Column(String(20), nullable=False)
    amount = Column(Money, nullable=False)
    account_reference = Column(String(50), nullable=True)
    transaction_desc = Column(String(255), nullable=True)

    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True, index=True)

    status = Column(String(16), nullable=False, default=MpesaStatus.PENDING.value)
    result_code = Column(String(10), nullable=True)
    result_desc = Column(String(255), nullable=True)
    receipt_number = Column(String(50), nullable=True)
    transaction_id = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    invoice = relationship("Invoice")
