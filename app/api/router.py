# app/api/router.py
from fastapi import APIRouter
from app.api import (
    routes_inventory,
    routes_financial,
    routes_prescriptions,
    routes_lab_tests,
    routes_lab_requests,
)

api_router = APIRouter()

# Inventory / Pharmacy
api_router.include_router(routes_inventory.router)
api_router.include_router(routes_prescriptions.router)

# Billing / M-Pesa
api_router.include_router(routes_financial.router)

# Laboratory
api_router.include_router(routes_lab_tests.router)
api_router.include_router(routes_lab_requests.router)
