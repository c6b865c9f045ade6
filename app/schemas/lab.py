# FILE: app/schemas/lab.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal

from app.models.lab import LabStatus, LabUrgency


# ---------------- Catalog ----------------
class LabTestBase(BaseModel):
    test_code: str = Field(..., min_length=1, max_length=50)
    test_name: str = Field(..., min_length=1, max_length=255)
    test_category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    specimen_type: str = Field(..., min_length=1, max_length=100)
    turnaround_time: int = Field(24, gt=0)
    price: condecimal(max_digits=12, decimal_places=2, ge=0) = Decimal("0")
    is_active: bool = True
    reference_ranges: Optional[Dict[str, Any]] = None
    instructions: Optional[str] = None


class LabTestCreate(LabTestBase):
    pass


class LabTestUpdate(BaseModel):
    test_code: Optional[str] = Field(None, min_length=1, max_length=50)
    test_name: Optional[str] = Field(None, min_length=1, max_length=255)
    test_category: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    specimen_type: Optional[str] = Field(None, min_length=1, max_length=100)
    turnaround_time: Optional[int] = Field(None, gt=0)
    price: Optional[condecimal(max_digits=12, decimal_places=2, ge=0)] = None
    is_active: Optional[bool] = None
    reference_ranges: Optional[Dict[str, Any]] = None
    instructions: Optional[str] = None


class LabTestOut(LabTestBase):
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------- Requests ----------------
class LabRequestItemIn(BaseModel):
    test_id: int
    clinical_notes: Optional[str] = None


class LabRequestCreate(BaseModel):
    visit_id: int
    patient_id: int
    clinical_notes: Optional[str] = None
    urgency: LabUrgency = LabUrgency.ROUTINE
    expected_completion_at: Optional[datetime] = None
    items: List[LabRequestItemIn] = Field(..., min_length=1)


class LabRequestItemOut(BaseModel):
    id: int
    lab_request_id: int
    test_id: int
    test_name: str
    test_code: str
    specimen_type: str
    status: str
    clinical_notes: Optional[str] = None
    result_data: Optional[Dict[str, Any]] = None
    reference_ranges: Optional[Dict[str, Any]] = None
    abnormal_flags: Optional[Dict[str, Any]] = None
    technician_notes: Optional[str] = None
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    reported_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LabRequestOut(BaseModel):
    id: int
    visit_id: int
    patient_id: int
    requested_by: Optional[int] = None
    clinical_notes: Optional[str] = None
    urgency: str
    status: str
    specimen_collected_at: Optional[datetime] = None
    collected_by: Optional[int] = None
    expected_completion_at: Optional[datetime] = None
    requested_at: datetime
    reported_at: Optional[datetime] = None
    items: List[LabRequestItemOut] = []

    model_config = ConfigDict(from_attributes=True)


class LabRequestStatusIn(BaseModel):
    status: LabStatus
    specimen_collected_at: Optional[datetime] = None


class LabRequestItemStatusIn(BaseModel):
    status: LabStatus
    result_data: Optional[Dict[str, Any]] = None
    abnormal_flags: Optional[Dict[str, Any]] = None
    technician_notes: Optional[str] = None
