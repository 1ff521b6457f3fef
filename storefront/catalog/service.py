from typing import Any, Dict, List, Optional
from storefront.catalog import repository as repo

def list_products(category: Optional[str] = None) -> List[Dict[str, Any]]:
    if not category or category == "all":
        return repo.list_available_products()
    return repo.list_products_by_category(category)

def get_categories() -> List[Dict[str, Any]]:
    return repo.get_categories()

def get_product(product_id: str) -> Optional[Dict[str, Any]]:
    return repo.get_product(product_id)

def find_variant(product: Dict[str, Any], variant_id: Optional[str]) -> Optional[Dict[str, Any]]:
    """Variante disponible du produit, None si absente ou indisponible."""
    if not variant_id:
        return None
    for v in product.get("variants") or []:
        if str(v.get("id")) == str(variant_id) and v.get("is_available", True):
            return v
    return None
