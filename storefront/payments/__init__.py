"""
Module 'payments' (feature-first): point d'entrée public.
Réunit le client Stripe, les métadonnées de session, les options de livraison
et la construction des sessions Checkout.
"""

from .metadata import encode_items, decode_items, items_subtotal
from .shipping import shipping_options, shipping_address_collection
from .stripe_client import require_stripe, create_session, get_session, verify_signature
from .service import create_one_time_session, create_subscription_session, get_session_summary

__all__ = [
    # metadata
    "encode_items",
    "decode_items",
    "items_subtotal",
    # shipping
    "shipping_options",
    "shipping_address_collection",
    # stripe
    "require_stripe",
    "create_session",
    "get_session",
    "verify_signature",
    # services
    "create_one_time_session",
    "create_subscription_session",
    "get_session_summary",
]
