# FILE: app/models/inventory.py
from __future__ import annotations

import enum
from datetime import datetime, date
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, Boolean, Date, DateTime, Numeric,
    ForeignKey, Text, CheckConstraint, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.db.base import Base

Money = Numeric(12, 2)


class MovementType(str, enum.Enum):
    RECEIVE = "RECEIVE"
    DISPENSE = "DISPENSE"
    ADJUST = "ADJUST"
    EXPIRE = "EXPIRE"
    TRANSFER = "TRANSFER"


# Stock leaves the batch for these types; ADJUST carries its own sign.
OUTBOUND_MOVEMENTS = {MovementType.DISPENSE, MovementType.EXPIRE, MovementType.TRANSFER}


class InventoryItem(Base):
    __tablename__ = "inventory_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False, index=True)
    generic_name = Column(String(255), nullable=True)
    category = Column(String(100), nullable=False, index=True)
    unit = Column(String(50), nullable=False, default="unit")

    reorder_level = Column(Integer, nullable=False, default=0)
    max_level = Column(Integer, nullable=False, default=1000)

    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    batches = relationship("InventoryBatch", back_populates="item")
    movements = relationship("InventoryMovement", back_populates="item")


class InventoryBatch(Base):
    """
    A dated lot of one item.
    original_quantity is the receipt snapshot; quantity is what is left.
    """
    __tablename__ = "inventory_batches"
    __table_args__ = (
        UniqueConstraint("inventory_item_id", "batch_number", name="uq_inventory_batch_item_number"),
        CheckConstraint("quantity >= 0", name="ck_inventory_batch_qty_nonneg"),
        CheckConstraint("quantity <= original_quantity", name="ck_inventory_batch_qty_le_original"),
        Index("ix_inventory_batch_item_expiry", "inventory_item_id", "expiry_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False, index=True)

    batch_number = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False, default=0)
    original_quantity = Column(Integer, nullable=False)

    unit_cost = Column(Money, nullable=False, default=Decimal("0.00"))
    selling_price = Column(Money, nullable=False, default=Decimal("0.00"))
    expiry_date = Column(Date, nullable=False)
    supplier_name = Column(String(255), nullable=True)

    received_date = Column(Date, nullable=False, default=date.today)
    received_by = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    item = relationship("InventoryItem", back_populates="batches")
    movements = relationship("InventoryMovement", back_populates="batch")

    @property
    def item_name(self) -> str:
        return self.item.name if self.item is not None else ""


class InventoryMovement(Base):
    """Append-only stock ledger. Rows are never updated or deleted."""
    __tablename__ = "inventory_movements"
    __table_args__ = (
        Index("ix_inventory_movement_item_time", "inventory_item_id", "performed_at"),
        Index("ix_inventory_movement_batch", "batch_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    inventory_item_id = Column(Integer, ForeignKey("inventory_items.id"), nullable=False)
    batch_id = Column(Integer, ForeignKey("inventory_batches.id"), nullable=True)

    movement_type = Column(String(20), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_cost = Column(Money, nullable=True)

    reference = Column(String(255), nullable=True)
    performed_by = Column(Integer, nullable=True)
    performed_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    notes = Column(Text, nullable=True)

    item = relationship("InventoryItem", back_populates="movements")
    batch = relationship("InventoryBatch", back_populates="movements")
