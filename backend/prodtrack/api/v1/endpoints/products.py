"""
Product endpoints.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from prodtrack.api.v1.deps import get_db
from prodtrack.schemas.product import ProductCreate, ProductFlowResponse, ProductResponse
from prodtrack.services.product_service import ProductService

router = APIRouter(prefix="/products", tags=["Products"])


@router.post("", response_model=ProductResponse, status_code=201, summary="Create a product")
def create_product(request: ProductCreate, db: Session = Depends(get_db)):
    """
    Create a product with its manufacturing stages and per-piece BOM.

    Validations:
    - at least one stage, in canonical order
    - a single-stage product uses Molding or Machining
    - Assembling/Testing need Molding or Machining
    - BOM rows only use the product's stages
    """
    product = ProductService.create_product(
        db,
        name=request.name,
        manufacturing_stages=[s.value for s in request.manufacturing_stages],
        bom_per_piece=[
            {**row.model_dump(), "stage": row.stage.value} for row in request.bom_per_piece
        ],
        product_code=request.product_code,
        sku=request.sku,
        price=request.price,
        gst_rate=request.gst_rate,
        quantity=request.quantity,
        threshold=request.threshold,
        user=request.user,
    )
    db.commit()
    db.refresh(product)
    return ProductResponse.model_validate(product)


@router.get("", response_model=List[ProductResponse])
def list_products(search: Optional[str] = Query(None), db: Session = Depends(get_db)):
    return [ProductResponse.model_validate(p) for p in ProductService.list_products(db, search)]


@router.get("/{product_id}", response_model=ProductResponse)
def get_product(product_id: str, db: Session = Depends(get_db)):
    return ProductResponse.model_validate(ProductService.get_product(db, product_id))


@router.get("/{product_id}/flow", response_model=ProductFlowResponse, summary="Effective stage flow")
def get_product_flow(product_id: str, db: Session = Depends(get_db)):
    return ProductFlowResponse(**ProductService.flow_info(ProductService.get_product(db, product_id)))
