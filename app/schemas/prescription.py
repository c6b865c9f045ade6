# FILE: app/schemas/prescription.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.prescription import PrescriptionStatus


class PrescriptionItemIn(BaseModel):
    inventory_item_id: int
    item_name: str = Field(..., min_length=1, max_length=255)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: str = Field(..., min_length=1, max_length=100)
    duration: str = Field(..., min_length=1, max_length=100)
    quantity_prescribed: int = Field(..., gt=0)
    instructions: Optional[str] = None


class PrescriptionCreate(BaseModel):
    consultation_id: Optional[int] = None
    visit_id: int
    patient_id: int
    items: List[PrescriptionItemIn] = Field(..., min_length=1)


class PrescriptionItemOut(BaseModel):
    id: int
    prescription_id: int
    inventory_item_id: int
    item_name: str
    dosage: str
    frequency: str
    duration: str
    quantity_prescribed: int
    quantity_dispensed: int
    instructions: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PrescriptionOut(BaseModel):
    id: int
    consultation_id: Optional[int] = None
    visit_id: int
    patient_id: int
    prescribed_by: Optional[int] = None
    status: str
    created_at: datetime
    updated_at: datetime
    items: List[PrescriptionItemOut] = []

    model_config = ConfigDict(from_attributes=True)


class PrescriptionStatusIn(BaseModel):
    status: PrescriptionStatus


class DispensedQuantityIn(BaseModel):
    quantity_dispensed: int = Field(..., ge=0)
