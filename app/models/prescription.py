# FILE: app/models/prescription.py
from __future__ import annotations

import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, CheckConstraint
from sqlalchemy.orm import relationship

from app.db.base import Base


class PrescriptionStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARTIALLY_DISPENSED = "PARTIALLY_DISPENSED"
    FULLY_DISPENSED = "FULLY_DISPENSED"
    CANCELLED = "CANCELLED"


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    consultation_id = Column(Integer, nullable=True, index=True)
    visit_id = Column(Integer, nullable=False, index=True)
    patient_id = Column(Integer, nullable=False, index=True)
    prescribed_by = Column(Integer, nullable=True)

    status = Column(String(30), nullable=False, default=PrescriptionStatus.PENDING.value)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    items = relationship(
        "PrescriptionItem",
        back_populates="prescription",
        cascade="all, delete-orphan",
        order_by="PrescriptionItem.id",
    )


class PrescriptionItem(Base):
    __tablename__ = "prescription_items"
    __table_args__ = (
        CheckConstraint("quantity_dispensed >= 0", name="ck_rx_item_dispensed_nonneg"),
    )

    id = Column(Integer, primary_key=True, index=True)
    prescription_id = Column(Integer, ForeignKey("prescriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False)

    item_name = Column(String(255), nullable=False)
    dosage = Column(String(100), nullable=False)
    frequency = Column(String(100), nullable=False)
    duration = Column(String(100), nullable=False)

    quantity_prescribed = Column(Integer, nullable=False)
    quantity_dispensed = Column(Integer, nullable=False, default=0)
    instructions = Column(Text, nullable=True)

    prescription = relationship("Prescription", back_populates="items")
