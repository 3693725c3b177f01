from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storefront.db import get_db
from storefront.repositories.product_repo import ProductRepository
from storefront.schemas.product_schema import ProductOut

router = APIRouter(tags=["catalogue"])


@router.get("", summary="List products")
def list_products(
    q: Optional[str] = Query(None, description="search term"),
    category_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    repo = ProductRepository(db)
    items, total = repo.list(q=q, category_id=category_id, page=page, size=size)
    return {
        "items": [ProductOut.model_validate(p).model_dump(mode="json") for p in items],
        "total": total,
        "page": page,
        "size": size,
    }


@router.get("/{sku}", summary="Get product by SKU")
def get_product(sku: str, db: Session = Depends(get_db)):
    repo = ProductRepository(db)
    p = repo.get_by_sku(sku)
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    return ProductOut.model_validate(p).model_dump(mode="json")
