"""
api/routes/v1/products.py -- Sample resource guarded by a permission.

GET /api/v1/products requires PRODUCT_READ, which the default USER role holds.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import ProductListResponse
from auth.dependencies import require_permission
from auth.models import Principal

router = APIRouter()

_PRODUCTS = ["Product 1", "Product 2", "Product 3"]


@router.get("/products", response_model=ProductListResponse)
async def list_products(principal: Principal = Depends(require_permission("PRODUCT_READ"))) -> ProductListResponse:
    return ProductListResponse(products=list(_PRODUCTS))
