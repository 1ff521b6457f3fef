"""
Adaptateur Stripe: centralise les appels et la configuration Stripe.
Chaque fonction renvoie des dicts; les erreurs Stripe (stripe.StripeError) remontent à l'appelant.
"""
import stripe
from typing import Any, Dict, List, Optional
from storefront.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET

# module storefront.payments.stripe_client

# Tolérance (secondes) sur l'horodatage de la signature du webhook
SIGNATURE_TOLERANCE = 300

def require_stripe():
    """
    Prépare et retourne le module stripe prêt à l’emploi.
    En absence de clé, les appels Stripe échouent côté SDK (No API key provided).
    """
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
    return stripe

def _to_dict(obj: Any) -> Dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)

# --- Catalogue Stripe (produits / prix / coupons) ---

def create_product(*, name: str, description: Optional[str] = None, images: Optional[List[str]] = None,
                   metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    require_stripe()
    params: Dict[str, Any] = {"name": name}
    if description:
        params["description"] = description
    if images:
        params["images"] = images
    if metadata:
        params["metadata"] = metadata
    return _to_dict(stripe.Product.create(**params))

def create_price(*, product_id: str, unit_amount: int, currency: str,
                 recurring: Optional[Dict[str, Any]] = None, lookup_key: Optional[str] = None,
                 metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    require_stripe()
    params: Dict[str, Any] = {
        "product": product_id,
        "unit_amount": unit_amount,
        "currency": currency.lower(),
    }
    if recurring:
        params["recurring"] = recurring
    if lookup_key:
        params["lookup_key"] = lookup_key
    if metadata:
        params["metadata"] = metadata
    return _to_dict(stripe.Price.create(**params))

def find_price_by_lookup_key(lookup_key: str) -> Optional[Dict[str, Any]]:
    require_stripe()
    res = stripe.Price.list(lookup_keys=[lookup_key], active=True, limit=1)
    data = list(getattr(res, "data", None) or [])
    return _to_dict(data[0]) if data else None

def create_coupon(*, amount_off: int, currency: str, name: str) -> Dict[str, Any]:
    """Coupon à usage unique (duration=once, max_redemptions=1)."""
    require_stripe()
    return _to_dict(stripe.Coupon.create(
        amount_off=amount_off,
        currency=currency.lower(),
        duration="once",
        max_redemptions=1,
        name=name,
    ))

# --- Clients ---

def find_customer_by_email(email: str) -> Optional[Dict[str, Any]]:
    require_stripe()
    res = stripe.Customer.list(email=email, limit=1)
    data = list(getattr(res, "data", None) or [])
    return _to_dict(data[0]) if data else None

def create_customer(*, email: str, name: Optional[str] = None, metadata: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    require_stripe()
    return _to_dict(stripe.Customer.create(email=email, name=name or email, metadata=metadata or {}))

# --- Sessions Checkout ---

def create_session(**params: Any) -> Dict[str, Any]:
    """
    Crée une session Stripe Checkout (mode "payment" ou "subscription").
    Retour: dict session (ex: {"id": "cs_test_...", "url": "https://..."})
    """
    require_stripe()
    params.setdefault("payment_method_types", ["card"])
    return _to_dict(stripe.checkout.Session.create(**params))

def get_session(session_id: str) -> Dict[str, Any]:
    """
    Récupère une session Stripe Checkout par son identifiant.
    Retour: dict session incluant "id", "payment_intent", "payment_status", "metadata", etc.
    """
    require_stripe()
    return _to_dict(stripe.checkout.Session.retrieve(session_id))

# --- Webhook ---

def verify_signature(payload: bytes, sig_header: Optional[str], secret: Optional[str] = None) -> None:
    """
    Vérifie l'en-tête Stripe-Signature (t=<ts>,v1=<hmac sha256>) sur le corps brut.
    Lève stripe.SignatureVerificationError (ou ValueError si l'en-tête est absent/illisible).
    """
    secret = secret if secret is not None else STRIPE_WEBHOOK_SECRET
    if not secret:
        raise ValueError("STRIPE_WEBHOOK_SECRET non configuré")
    if not sig_header:
        raise ValueError("Stripe-Signature manquant")
    stripe.WebhookSignature.verify_header(payload, sig_header, secret, SIGNATURE_TOLERANCE)
