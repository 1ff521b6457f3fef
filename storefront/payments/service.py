"""
Cas d'usage 'payments': construction des sessions Stripe Checkout.
- Paiement unique: un Product + un Price Stripe par article, forfaits de livraison,
  coupon à usage unique pour la remise de parrainage, métadonnées minimales des articles
- Abonnement: client Stripe retrouvé par email (sinon créé), prix mensuel récurrent
  réutilisé par plan (cache mémoire puis lookup_key Stripe), session en mode subscription
Toute erreur Stripe interrompt la construction (PaymentProviderError); rien n'est écrit localement.
"""
import logging
from typing import Any, Dict, List, Optional

import stripe

from storefront import policy
from storefront.errors import (
    CartEmptyError,
    CheckoutSessionNotFound,
    EmailRequiredError,
    PaymentProviderError,
)
from . import metadata as meta
from . import shipping
from . import stripe_client

logger = logging.getLogger(__name__)

RETRY_MESSAGE = "Le service de paiement est momentanément indisponible, veuillez réessayer"

# Prix récurrents déjà résolus dans ce processus: lookup_key -> price_id
_PRICE_CACHE: Dict[str, str] = {}

def _product_name(item: Dict[str, Any]) -> str:
    name = str(item.get("name") or "Article")
    color = item.get("color")
    return f"{name} ({color})" if color else name

def create_one_time_session(
    items: List[Dict[str, Any]],
    currency: str,
    success_url: str,
    cancel_url: str,
    referral_code: Optional[str] = None,
    discount_amount: Optional[float] = None,
    customer_email: Optional[str] = None,
) -> Dict[str, str]:
    """
    Session Checkout en mode "payment".
    items: [{id, name, price (devise du checkout), quantity, color?, image_url?, description?}]
    Retour: {"id": "cs_...", "url": "https://checkout.stripe.com/..."}
    """
    if not items:
        raise CartEmptyError("Votre panier est vide")
    cur = policy.normalize_currency(currency).lower()
    # Encodé avant tout appel Stripe: un panier trop volumineux ne crée aucun objet distant
    metadata: Dict[str, str] = {"items": meta.encode_items(items)}

    try:
        line_items: List[Dict[str, Any]] = []
        for item in items:
            image = item.get("image_url")
            product = stripe_client.create_product(
                name=_product_name(item),
                description=item.get("description") or f"Product ID: {item.get('id')}",
                images=[image] if image else None,
                metadata={"product_id": str(item.get("id") or "")},
            )
            price = stripe_client.create_price(
                product_id=product["id"],
                unit_amount=policy.to_cents(item.get("price") or 0),
                currency=cur,
            )
            line_items.append({"price": price["id"], "quantity": int(item.get("quantity") or 1)})

        params: Dict[str, Any] = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "billing_address_collection": "required",
            "shipping_address_collection": shipping.shipping_address_collection(),
            "shipping_options": shipping.shipping_options(cur),
            "metadata": metadata,
        }
        if customer_email:
            params["customer_email"] = customer_email

        if referral_code and discount_amount and discount_amount > 0:
            coupon = stripe_client.create_coupon(
                amount_off=policy.to_cents(discount_amount),
                currency=cur,
                name=f"Referral Discount - {referral_code}",
            )
            params["discounts"] = [{"coupon": coupon["id"]}]
            metadata["referral_code"] = referral_code
            metadata["discount_amount"] = f"{policy.money(discount_amount):.2f}"

        session = stripe_client.create_session(**params)
    except stripe.StripeError as e:
        logger.exception("payments.service.create_one_time_session failed")
        raise PaymentProviderError(RETRY_MESSAGE) from e

    if not session.get("url"):
        raise PaymentProviderError(RETRY_MESSAGE)
    logger.info("payments.session created id=%s mode=payment items=%s referral=%s",
                session.get("id"), len(items), bool(metadata.get("referral_code")))
    return {"id": session.get("id"), "url": session.get("url")}

# --- Abonnements ---

def plan_id_for(product_id: str, quantity_type: str, quantity: int) -> str:
    return f"{product_id}-{quantity_type}-{quantity}"

def _resolve_customer(user: Dict[str, Any]) -> str:
    email = user.get("email")
    customer = stripe_client.find_customer_by_email(email)
    if customer:
        return customer["id"]
    created = stripe_client.create_customer(
        email=email,
        name=user.get("display_name") or email,
        metadata={"supabase_user_id": str(user.get("id") or "")},
    )
    return created["id"]

def _resolve_recurring_price(selector: Dict[str, Any], plan_id: str, monthly_amount: int, cur: str) -> str:
    """
    Prix mensuel récurrent du plan: cache mémoire, puis lookup_key Stripe, sinon création.
    La clé inclut devise et montant: un changement de tarif produit un nouveau prix.
    """
    lookup_key = f"{plan_id}-{cur}-{monthly_amount}"
    cached = _PRICE_CACHE.get(lookup_key)
    if cached:
        return cached

    existing = stripe_client.find_price_by_lookup_key(lookup_key)
    if existing:
        _PRICE_CACHE[lookup_key] = existing["id"]
        return existing["id"]

    product = stripe_client.create_product(
        name=f"{selector.get('name') or 'Abonnement'} - Monthly Subscription",
        description=f"{selector.get('quantity')} unités par mois",
        metadata={
            "product_id": str(selector.get("product_id") or ""),
            "quantity_type": str(selector.get("quantity_type") or ""),
        },
    )
    price = stripe_client.create_price(
        product_id=product["id"],
        unit_amount=monthly_amount,
        currency=cur,
        recurring={"interval": policy.SUBSCRIPTION_INTERVAL},
        lookup_key=lookup_key,
        metadata={
            "plan_id": plan_id,
            "quantity": str(selector.get("quantity")),
            "quantity_type": str(selector.get("quantity_type") or ""),
            "discount_percent": str(selector.get("discount_percent") or 0),
        },
    )
    _PRICE_CACHE[lookup_key] = price["id"]
    return price["id"]

def create_subscription_session(
    user: Dict[str, Any],
    selector: Dict[str, Any],
    return_url: str,
    cancel_url: str,
    currency: str,
) -> Dict[str, str]:
    """
    Session Checkout en mode "subscription" pour un utilisateur authentifié.
    selector: {product_id, name, quantity_type, quantity, unit_price (devise du checkout), discount_percent}
    Métadonnées {user_id, plan_id, quantity, quantity_type} sur la session et sur l'abonnement.
    """
    if not user.get("email"):
        raise EmailRequiredError("Une adresse e-mail est requise pour souscrire un abonnement")
    quantity_type = str(selector.get("quantity_type") or "")
    quantity, _discount = policy.subscription_discount(quantity_type, selector.get("quantity"))
    cur = policy.normalize_currency(currency).lower()
    plan_id = plan_id_for(selector.get("product_id"), quantity_type, quantity)
    monthly_amount = policy.to_cents(float(selector.get("unit_price") or 0) * quantity)

    sub_metadata = {
        "user_id": str(user.get("id") or ""),
        "plan_id": plan_id,
        "quantity": str(quantity),
        "quantity_type": quantity_type,
    }
    try:
        customer_id = _resolve_customer(user)
        price_id = _resolve_recurring_price({**selector, "quantity": quantity}, plan_id, monthly_amount, cur)
        session = stripe_client.create_session(
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            billing_address_collection="required",
            shipping_address_collection=shipping.shipping_address_collection(),
            success_url=return_url,
            cancel_url=cancel_url,
            metadata=sub_metadata,
            subscription_data={"metadata": sub_metadata},
        )
    except stripe.StripeError as e:
        logger.exception("payments.service.create_subscription_session failed plan_id=%s", plan_id)
        raise PaymentProviderError(RETRY_MESSAGE) from e

    if not session.get("url"):
        raise PaymentProviderError(RETRY_MESSAGE)
    logger.info("payments.session created id=%s mode=subscription plan_id=%s", session.get("id"), plan_id)
    return {"id": session.get("id"), "url": session.get("url")}

# --- Lecture ---

def get_session_summary(session_id: str) -> Dict[str, Any]:
    """
    Détail public d'une session (page de succès):
    {session_id, payment_intent, payment_status, customer_details, metadata}
    """
    try:
        session = stripe_client.get_session(session_id)
    except stripe.InvalidRequestError as e:
        raise CheckoutSessionNotFound("Session de paiement introuvable") from e
    except stripe.StripeError as e:
        logger.exception("payments.service.get_session_summary failed id=%s", session_id)
        raise PaymentProviderError(RETRY_MESSAGE) from e
    return {
        "session_id": session.get("id"),
        "payment_intent": session.get("payment_intent"),
        "payment_status": session.get("payment_status"),
        "customer_details": session.get("customer_details"),
        "metadata": meta.session_metadata(session),
    }
