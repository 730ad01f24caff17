"""
Product Service

Final Stock product definitions: creation with stage/BOM validation and
lookup by PID, record id or name.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from prodtrack.core.config import settings
from prodtrack.core.stage_config import ActivityAction, RecordType
from prodtrack.exceptions import NotFoundError, ValidationError
from prodtrack.logging_config import get_logger
from prodtrack.models.product import Product, ProductBOMRow
from prodtrack.services.event_service import record_activity
from prodtrack.services.readable_ids import next_id
from prodtrack.services.stage_sequence import (
    describe_flow,
    resolve_effective_stages,
    shape_name,
    validate_bom_against_stages,
    validate_manufacturing_stages,
)

logger = get_logger(__name__)


class ProductService:
    """Product definitions. Caller commits."""

    @staticmethod
    def create_product(
        db: Session,
        name: str,
        manufacturing_stages: List[str],
        bom_per_piece: Optional[List[Dict[str, Any]]] = None,
        product_code: Optional[str] = None,
        sku: Optional[str] = None,
        price: Optional[Decimal] = None,
        gst_rate: Optional[Decimal] = None,
        quantity: Decimal = Decimal("0"),
        threshold: int = 0,
        user: Optional[str] = None,
    ) -> Product:
        if not name or not name.strip():
            raise ValidationError("Product name is required", field="name")
        stages = validate_manufacturing_stages(manufacturing_stages)
        bom_per_piece = bom_per_piece or []
        validate_bom_against_stages(bom_per_piece, stages)

        if product_code and db.query(Product).filter(Product.product_code == product_code).first():
            raise ValidationError(f"Product code {product_code} is already in use", field="product_code")

        product = Product(
            id=next_id(db, Product, "prod"),
            product_code=product_code,
            name=name.strip(),
            sku=sku,
            price=price,
            gst_rate=gst_rate,
            quantity=quantity,
            threshold=threshold,
            unit=settings.DEFAULT_UNIT,
            manufacturing_stages=[s.value for s in stages],
        )
        for row in bom_per_piece:
            product.bom_rows.append(ProductBOMRow(
                material_id=row["material_id"],
                stage=str(row["stage"]),
                qty_per_piece=row["qty_per_piece"],
                unit=row.get("unit"),
                source=row.get("source", "raw"),
                notes=row.get("notes"),
            ))
        db.add(product)
        db.flush()

        record_activity(
            db,
            record_id=product.id,
            record_type=RecordType.FINAL_STOCK,
            action=ActivityAction.CREATED,
            details=f"Product {product.name} created ({describe_flow(stages)})",
            user=user,
            new_quantity=Decimal(quantity),
            old_quantity=Decimal("0"),
        )
        logger.info(
            "Product created",
            extra={"product_id": product.id, "stages": product.manufacturing_stages},
        )
        return product

    @staticmethod
    def get_product(db: Session, product_id: str) -> Product:
        product = db.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    @staticmethod
    def find_product(db: Session, reference: str) -> Optional[Product]:
        """Look a product up by PID first, then by record id."""
        if not reference:
            return None
        product = db.query(Product).filter(Product.product_code == reference).first()
        if product is None:
            product = db.get(Product, reference)
        return product

    @staticmethod
    def get_or_create_by_name(db: Session, name: str, user: Optional[str] = None) -> Product:
        """
        Find a product by exact name, creating a bare Molding-only product
        when none exists.
        """
        product = db.query(Product).filter(Product.name == name).first()
        if product is not None:
            return product
        logger.warning("Creating product on the fly for final stock", extra={"product_name": name})
        return ProductService.create_product(db, name=name, manufacturing_stages=["Molding"], user=user)

    @staticmethod
    def list_products(db: Session, search: Optional[str] = None) -> List[Product]:
        query = db.query(Product)
        if search:
            pattern = f"%{search}%"
            query = query.filter(Product.name.ilike(pattern) | Product.product_code.ilike(pattern))
        return query.order_by(Product.name).all()

    @staticmethod
    def flow_info(product: Product) -> Dict[str, Any]:
        effective = resolve_effective_stages(product)
        return {
            "product_id": product.id,
            "stages": [s.value for s in effective.stages],
            "source": effective.source,
            "shape": shape_name(effective.shape),
            "description": describe_flow(effective.stages),
        }
