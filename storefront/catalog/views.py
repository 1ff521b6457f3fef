from typing import Optional
from fastapi import APIRouter
from storefront.catalog import service
from storefront.errors import ProductNotFoundError

router = APIRouter(prefix="/api/v1", tags=["Catalog"])

@router.get("/products")
def api_list_products(category: Optional[str] = None):
    return service.list_products(category)

@router.get("/products/{product_id}")
def api_get_product(product_id: str):
    product = service.get_product(product_id)
    if not product:
        raise ProductNotFoundError("Produit introuvable")
    return product

@router.get("/categories")
def api_list_categories():
    return service.get_categories()
