# app/models/__init__.py
from .inventory import InventoryItem, InventoryBatch, InventoryMovement, MovementType
from .billing import (
    NumberSeries,
    Invoice,
    InvoiceItem,
    Payment,
    AccountsReceivable,
    MpesaTransaction,
)
from .prescription import Prescription, PrescriptionItem
from .lab import LabTest, LabRequest, LabRequestItem

__all__ = [
    "InventoryItem",
    "InventoryBatch",
    "InventoryMovement",
    "MovementType",
    "NumberSeries",
    "Invoice",
    "InvoiceItem",
    "Payment",
    "AccountsReceivable",
    "MpesaTransaction",
    "Prescription",
    "PrescriptionItem",
    "LabTest",
    "LabRequest",
    "LabRequestItem",
]
