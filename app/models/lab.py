# FILE: app/models/lab.py
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Numeric, ForeignKey, Text, JSON, Index
)
from sqlalchemy.orm import relationship

from app.db.base import Base


class LabUrgency(str, enum.Enum):
    ROUTINE = "ROUTINE"
    URGENT = "URGENT"
    STAT = "STAT"


class LabStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    SAMPLE_COLLECTED = "SAMPLE_COLLECTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


OPEN_LAB_STATUSES = (
    LabStatus.REQUESTED.value,
    LabStatus.SAMPLE_COLLECTED.value,
    LabStatus.IN_PROGRESS.value,
)


class LabTest(Base):
    """Catalog entry for an orderable test."""
    __tablename__ = "clinical_lab_tests"

    id = Column(Integer, primary_key=True, index=True)
    test_code = Column(String(50), unique=True, nullable=False, index=True)
    test_name = Column(String(255), nullable=False)
    test_category = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    specimen_type = Column(String(100), nullable=False)
    turnaround_time = Column(Integer, nullable=False, default=24)  # hours
    price = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    is_active = Column(Boolean, nullable=False, default=True)
    reference_ranges = Column(JSON, nullable=True)
    instructions = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class LabRequest(Base):
    __tablename__ = "lab_requests"
    __table_args__ = (
        Index("ix_lab_requests_status_urgency", "status", "urgency"),
    )

    id = Column(Integer, primary_key=True, index=True)
    visit_id = Column(Integer, nullable=False, index=True)
    patient_id = Column(Integer, nullable=False, index=True)
    requested_by = Column(Integer, nullable=True)

    clinical_notes = Column(Text, nullable=True)
    urgency = Column(String(10), nullable=False, default=LabUrgency.ROUTINE.value)
    status = Column(String(20), nullable=False, default=LabStatus.REQUESTED.value)

    specimen_collected_at = Column(DateTime, nullable=True)
    collected_by = Column(Integer, nullable=True)
    expected_completion_at = Column(DateTime, nullable=True)

    requested_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    reported_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    items = relationship(
        "LabRequestItem",
        back_populates="lab_request",
        cascade="all, delete-orphan",
        order_by="LabRequestItem.id",
    )


class LabRequestItem(Base):
    __tablename__ = "lab_request_items"

    id = Column(Integer, primary_key=True, index=True)
    lab_request_id = Column(Integer, ForeignKey("lab_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    test_id = Column(Integer, ForeignKey("clinical_lab_tests.id"), nullable=False)

    # snapshot of the catalog entry at request time
    test_name = Column(String(255), nullable=False)
    test_code = Column(String(50), nullable=False)
    specimen_type = Column(String(100), nullable=False)

    status = Column(String(20), nullable=False, default=LabStatus.REQUESTED.value)
    clinical_notes = Column(Text, nullable=True)

    result_data = Column(JSON, nullable=True)
    reference_ranges = Column(JSON, nullable=True)
    abnormal_flags = Column(JSON, nullable=True)
    technician_notes = Column(Text, nullable=True)

    verified_by = Column(Integer, nullable=True)
    verified_at = Column(DateTime, nullable=True)
    reported_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    lab_request = relationship("LabRequest", back_populates="items")
    test = relationship("LabTest")
