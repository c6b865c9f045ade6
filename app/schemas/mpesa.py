# FILE: app/schemas/mpesa.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal, field_validator


class StkPushIn(BaseModel):
    invoice_id: int
    phone_number: str = Field(..., min_length=9, max_length=20)
    amount: condecimal(max_digits=12, decimal_places=2, gt=0)
    account_reference: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=255)

    @field_validator("phone_number")
    @classmethod
    def _digits_only(cls, v: str) -> str:
        s = v.strip().replace(" ", "")
        if not s.lstrip("+").isdigit():
            raise ValueError("phone_number must contain digits only")
        return s


class MpesaTransactionOut(BaseModel):
    id: int
    transaction_type: str
    merchant_request_id: Optional[str] = None
    checkout_request_id: str
    phone_number: str
    amount: Decimal
    account_reference: Optional[str] = None
    transaction_desc: Optional[str] = None
    invoice_id: Optional[int] = None
    status: str
    result_code: Optional[str] = None
    result_desc: Optional[str] = None
    receipt_number: Optional[str] = None
    transaction_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
