"""
Panier (agrégat pur, sans Stripe ni BD) et son stockage en session Starlette.
"""
from .models import Cart, CartLine

__all__ = ["Cart", "CartLine"]
