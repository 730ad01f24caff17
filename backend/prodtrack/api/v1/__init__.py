"""
API v1 Router - ProdTrack
"""
from fastapi import APIRouter
from prodtrack.api.v1.endpoints import (
    activity_logs,
    batches,
    inventory_items,
    products,
    stages,
)

router = APIRouter()

# Raw materials and intermediate pools
router.include_router(inventory_items.router)

# Final Stock products
router.include_router(products.router)

# Production batches
router.include_router(batches.router)

# Stage queues and bulk submissions
router.include_router(stages.router)

# Audit trail
router.include_router(activity_logs.router)
