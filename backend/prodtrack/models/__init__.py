"""Database models"""
from prodtrack.models.inventory_item import InventoryItem
from prodtrack.models.product import Product, ProductBOMRow, FinalStockLot
from prodtrack.models.batch import Batch, BatchMaterial, BatchStageRecord
from prodtrack.models.activity_log import ActivityLog

__all__ = [
    "InventoryItem",
    "Product",
    "ProductBOMRow",
    "FinalStockLot",
    "Batch",
    "BatchMaterial",
    "BatchStageRecord",
    "ActivityLog",
]
