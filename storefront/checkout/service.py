"""
Assemblage de l'orchestrateur de checkout pour la couche HTTP:
URLs de retour issues de la configuration, constructeur de sessions Stripe, validateur de parrainage.
"""
from typing import Any, Dict, List, Optional

from storefront import config
from storefront.cart.models import Cart
from storefront.catalog import service as catalog
from storefront.checkout.orchestrator import CheckoutOrchestrator
from storefront.errors import ProductNotFoundError
from storefront.payments import service as session_builder
from storefront.referrals import service as referrals

def _absolute(path: str) -> str:
    return f"{config.BASE_URL}/{path.lstrip('/')}"

def make_orchestrator(cart: Cart, currency: Optional[str] = None) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(
        cart,
        session_builder,
        referrals.validate,
        success_url=_absolute(config.CHECKOUT_SUCCESS_PATH),
        cancel_url=_absolute(config.CHECKOUT_CANCEL_PATH),
        subscription_success_url=_absolute(config.SUBSCRIPTION_SUCCESS_PATH),
        subscription_cancel_url=_absolute(config.SUBSCRIPTION_CANCEL_PATH),
        currency=currency or config.DEFAULT_CURRENCY,
        login_path=config.LOGIN_PATH,
    )

def cart_from_items(items: List[Dict[str, Any]]) -> Cart:
    """
    Panier transitoire construit depuis [{product_id, variant_id?, quantity}]:
    prix relus dans le catalogue, mêmes règles que le panier de session.
    """
    cart = Cart()
    for it in items:
        product = catalog.get_product(it["product_id"])
        if not product:
            raise ProductNotFoundError("Produit introuvable", extra={"product_id": it["product_id"]})
        variant = None
        if it.get("variant_id"):
            variant = catalog.find_variant(product, it["variant_id"])
            if not variant:
                raise ProductNotFoundError("Variante introuvable ou indisponible", extra={"variant_id": it["variant_id"]})
        cart.add_line(product, int(it.get("quantity") or 1), variant=variant)
    return cart

def subscription_cart(product_id: str, quantity_type: str, quantity: Optional[int]) -> Cart:
    product = catalog.get_product(product_id)
    if not product:
        raise ProductNotFoundError("Produit introuvable", extra={"product_id": product_id})
    cart = Cart()
    cart.add_line(product, 1, subscription_selector={"quantity_type": quantity_type, "quantity": quantity})
    return cart
