from typing import Any, Dict, Optional
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from storefront import policy
from storefront.cart.models import Cart
from storefront.cart.session import load_cart, save_cart, clear_session_cart
from storefront.catalog import service as catalog
from storefront.errors import ProductNotFoundError

router = APIRouter(prefix="/api/v1/cart", tags=["Cart"])

class SubscriptionSelection(BaseModel):
    quantity_type: str
    quantity: Optional[int] = None

class AddLineRequest(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)
    variant_id: Optional[str] = None
    subscription: Optional[SubscriptionSelection] = None

class UpdateLineRequest(BaseModel):
    quantity: int
    variant_id: Optional[str] = None

def cart_summary(cart: Cart, currency: Optional[str] = None) -> Dict[str, Any]:
    total = cart.get_total()
    summary: Dict[str, Any] = {
        "lines": [line.to_dict() for line in cart.lines],
        "total": total,
        "item_count": cart.get_item_count(),
        "mode": cart.mode,
    }
    if currency:
        code = policy.normalize_currency(currency)
        converted = policy.convert_price(total, code)
        summary["currency"] = code
        summary["display_total"] = policy.format_price(converted, code)
    return summary

@router.get("")
def get_cart(request: Request, currency: Optional[str] = None):
    return cart_summary(load_cart(request), currency)

@router.post("/lines")
def add_line(payload: AddLineRequest, request: Request):
    """
    Ajoute un produit au panier de session.
    - Le prix vient du catalogue (jamais du client)
    - Conflit de mode (abonnement vs articles): 409, panier inchangé
    """
    product = catalog.get_product(payload.product_id)
    if not product:
        raise ProductNotFoundError("Produit introuvable")
    variant = None
    if payload.variant_id and not payload.subscription:
        variant = catalog.find_variant(product, payload.variant_id)
        if not variant:
            raise ProductNotFoundError("Variante introuvable ou indisponible")

    cart = load_cart(request)
    selector = payload.subscription.model_dump() if payload.subscription else None
    cart.add_line(product, payload.quantity, variant=variant, subscription_selector=selector)
    save_cart(request, cart)
    return cart_summary(cart)

@router.patch("/lines/{product_id}")
def update_line(product_id: str, payload: UpdateLineRequest, request: Request):
    cart = load_cart(request)
    cart.update_quantity(product_id, payload.quantity, variant_id=payload.variant_id)
    save_cart(request, cart)
    return cart_summary(cart)

@router.delete("/lines/{product_id}")
def remove_line(product_id: str, request: Request, variant_id: Optional[str] = None):
    cart = load_cart(request)
    cart.remove_line(product_id, variant_id=variant_id)
    save_cart(request, cart)
    return cart_summary(cart)

@router.delete("")
def clear_cart(request: Request):
    clear_session_cart(request)
    return cart_summary(Cart())
