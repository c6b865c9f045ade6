# FILE: app/schemas/inventory.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, condecimal, field_validator

from app.schemas.common import PageMeta

Money = condecimal(max_digits=12, decimal_places=2, ge=0)


# ---------------- Items ----------------
class InventoryItemBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    generic_name: Optional[str] = Field(None, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    unit: str = Field("unit", min_length=1, max_length=50)
    reorder_level: int = Field(0, ge=0)
    max_level: int = Field(1000, ge=0)


class InventoryItemCreate(InventoryItemBase):
    pass


class InventoryItemUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    generic_name: Optional[str] = Field(None, max_length=255)
    category: Optional[str] = Field(None, min_length=1, max_length=100)
    unit: Optional[str] = Field(None, min_length=1, max_length=50)
    reorder_level: Optional[int] = Field(None, ge=0)
    max_level: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class InventoryItemOut(InventoryItemBase):
    id: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InventoryItemPage(BaseModel):
    items: List[InventoryItemOut]
    meta: PageMeta


# ---------------- Batches ----------------
class BatchCreate(BaseModel):
    inventory_item_id: int
    batch_number: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(..., gt=0)
    unit_cost: Money = Decimal("0")
    selling_price: Money = Decimal("0")
    expiry_date: date
    supplier_name: Optional[str] = Field(None, max_length=255)


class BatchOut(BaseModel):
    id: int
    inventory_item_id: int
    item_name: str = ""
    batch_number: str
    quantity: int
    original_quantity: int
    unit_cost: Decimal
    selling_price: Decimal
    expiry_date: date
    supplier_name: Optional[str] = None
    received_date: date
    received_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DispenseIn(BaseModel):
    batch_id: int
    quantity: int = Field(..., gt=0)
    reference: Optional[str] = Field(None, max_length=255)


class BatchAdjustIn(BaseModel):
    movement_type: Literal["ADJUST", "EXPIRE"] = "ADJUST"
    quantity: int
    notes: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("quantity must not be zero")
        return v


class BatchReconcileOut(BaseModel):
    batch_id: int
    quantity: int
    original_quantity: int
    ledger_quantity: int
    balanced: bool


# ---------------- Movements ----------------
class MovementOut(BaseModel):
    id: int
    inventory_item_id: int
    batch_id: Optional[int] = None
    movement_type: str
    quantity: int
    unit_cost: Optional[Decimal] = None
    reference: Optional[str] = None
    performed_by: Optional[int] = None
    performed_at: datetime
    notes: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class InventoryItemDetail(BaseModel):
    item: InventoryItemOut
    batches: List[BatchOut]
    recent_movements: List[MovementOut]


# ---------------- Reports ----------------
class StockLevelOut(BaseModel):
    item_id: int
    name: str
    generic_name: Optional[str] = None
    category: str
    unit: str
    reorder_level: int
    max_level: int
    total_quantity: int
    batch_count: int
    expiring_batches: int
    needs_reorder: bool


class ExpiringBatchOut(BaseModel):
    batch_id: int
    item_id: int
    item_name: str
    category: str
    batch_number: str
    quantity: int
    expiry_date: date
    days_to_expiry: int
    supplier_name: Optional[str] = None


class AvailableStockOut(BaseModel):
    item_id: int
    name: str
    generic_name: Optional[str] = None
    category: str
    unit: str
    available_quantity: int
    selling_price: Optional[Decimal] = None
    has_expiring_stock: bool
