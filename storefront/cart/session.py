"""
Stockage du panier dans la session Starlette (cookie signé, clé "cart").
"""
from fastapi import Request
from storefront.cart.models import Cart

SESSION_KEY = "cart"

def load_cart(request: Request) -> Cart:
    return Cart.from_dict(request.session.get(SESSION_KEY))

def save_cart(request: Request, cart: Cart) -> None:
    if cart.is_empty():
        request.session.pop(SESSION_KEY, None)
        return
    request.session[SESSION_KEY] = cart.to_dict()

def clear_session_cart(request: Request) -> None:
    request.session.pop(SESSION_KEY, None)
