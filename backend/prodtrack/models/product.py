"""
Product models - Final Stock definitions, per-piece BOM and lot ledger
"""
from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime

from prodtrack.db.base import Base


class Product(Base):
    """
    A finished product and its manufacturing configuration.

    ``manufacturing_stages`` is the authoritative ordered stage list.
    Stock is held either as a ledger of production lots (``lots``) or, for
    legacy products without lot tracking, as the flat ``quantity``.
    """
    __tablename__ = "products"

    id = Column(String(40), primary_key=True)  # prod_001
    product_code = Column(String(50), unique=True, nullable=True, index=True)  # user-facing PID
    name = Column(String(255), nullable=False, index=True)
    sku = Column(String(100), nullable=True)
    price = Column(Numeric(18, 2), nullable=True)
    gst_rate = Column(Numeric(5, 2), nullable=True)

    # Legacy flat stock (used only while the lot ledger is empty)
    quantity = Column(Numeric(18, 4), default=0, nullable=False)
    threshold = Column(Integer, nullable=False, default=0)
    unit = Column(String(20), nullable=False, default="pcs")

    manufacturing_stages = Column(JSON, nullable=False, default=list)

    # Auto-managed intermediate pool items
    moulded_material_id = Column(String(40), ForeignKey("inventory_items.id"), nullable=True)
    machined_material_id = Column(String(40), ForeignKey("inventory_items.id"), nullable=True)
    assembled_material_id = Column(String(40), ForeignKey("inventory_items.id"), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    bom_rows = relationship(
        "ProductBOMRow",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductBOMRow.id",
    )
    lots = relationship(
        "FinalStockLot",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="FinalStockLot.created_at",
    )

    @property
    def available_quantity(self) -> Decimal:
        """Sum of lot quantities, or the flat quantity for untracked products."""
        if self.lots:
            return sum((Decimal(lot.quantity or 0) for lot in self.lots), Decimal("0"))
        return Decimal(self.quantity or 0)

    @property
    def is_lot_tracked(self) -> bool:
        return bool(self.lots)

    def __repr__(self):
        return f"<Product {self.id}: {self.name}>"


class ProductBOMRow(Base):
    """One material requirement per piece, scoped to a stage"""
    __tablename__ = "product_bom_rows"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(String(40), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    # Points at an inventory item or, for source="final", another product
    material_id = Column(String(40), nullable=False)
    stage = Column(String(20), nullable=False)
    qty_per_piece = Column(Numeric(18, 4), nullable=False)
    unit = Column(String(20), nullable=True)
    source = Column(String(10), nullable=False, default="raw")  # raw | final
    notes = Column(Text, nullable=True)

    product = relationship("Product", back_populates="bom_rows")

    def __repr__(self):
        return f"<ProductBOMRow {self.stage}: {self.material_id} x {self.qty_per_piece}>"


class FinalStockLot(Base):
    """A production lot in a product's Final Stock ledger"""
    __tablename__ = "final_stock_lots"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(String(40), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    batch_code = Column(String(50), nullable=False)
    source_batch_code = Column(String(50), nullable=True)
    quantity = Column(Numeric(18, 4), nullable=False)
    sku = Column(String(100), nullable=True)  # BATCH-<code>

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    product = relationship("Product", back_populates="lots")

    def __repr__(self):
        return f"<FinalStockLot {self.batch_code}: {self.quantity}>"
