"""Réconciliation des paiements Stripe dans le registre des commandes.
Le webhook checkout.session.completed est la seule source de création des commandes:
- signature vérifiée avant toute lecture du contenu
- idempotence: lecture préalable par payment_intent + contrainte UNIQUE en base
- parrainage re-résolu côté serveur; son enregistrement ne fait jamais échouer la commande
"""
import json
import logging
from typing import Any, Dict, Optional

from storefront import policy
from storefront.errors import WebhookPayloadError, WebhookSignatureError
from storefront.orders import repository
from storefront.payments import metadata as meta
from storefront.payments import stripe_client
from storefront.referrals import repository as referrals_repo
from storefront.users import repository as users_repo

logger = logging.getLogger(__name__)

COMPLETED_EVENT = "checkout.session.completed"

def parse_verified_event(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    try:
        stripe_client.verify_signature(payload, sig_header)
    except Exception as e:
        logger.warning("orders.webhook: signature rejetée (%s)", e)
        raise WebhookSignatureError("Signature Stripe invalide") from e
    try:
        event = json.loads(payload)
    except ValueError as e:
        logger.warning("orders.webhook: corps JSON invalide")
        raise WebhookPayloadError("Payload du webhook invalide") from e
    if not isinstance(event, dict):
        raise WebhookPayloadError("Payload du webhook invalide")
    return event

def handle_webhook(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    """
    Point d'entrée du webhook.
    Retour: {"status": "created" | "duplicate" | "ignored", ...}
    """
    event = parse_verified_event(payload, sig_header)
    event_type = event.get("type")
    session = (event.get("data") or {}).get("object") or {}
    if event_type != COMPLETED_EVENT:
        logger.info("orders.webhook: événement ignoré type=%s id=%s", event_type, event.get("id"))
        return {"status": "ignored"}
    if session.get("mode") not in (None, "payment"):
        # Les abonnements sont suivis par Stripe; aucune commande locale
        logger.info("orders.webhook: session %s ignorée mode=%s", session.get("id"), session.get("mode"))
        return {"status": "ignored"}
    return reconcile_checkout_session(session)

def _shipping_address(session: Dict[str, Any]) -> Optional[Dict[str, str]]:
    shipping = session.get("shipping_details") or (session.get("collected_information") or {}).get("shipping_details") or {}
    address = shipping.get("address") or (session.get("customer_details") or {}).get("address")
    if not address:
        return None
    return {
        "line1": address.get("line1") or "",
        "line2": address.get("line2") or "",
        "city": address.get("city") or "",
        "postal_code": address.get("postal_code") or "",
        "state": address.get("state") or "",
        "country": address.get("country") or "",
    }

def reconcile_checkout_session(session: Dict[str, Any]) -> Dict[str, Any]:
    payment_intent = session.get("payment_intent")
    if isinstance(payment_intent, dict):
        payment_intent = payment_intent.get("id")
    if not payment_intent:
        raise WebhookPayloadError("payment_intent manquant")

    if repository.find_order_by_payment_intent(payment_intent):
        logger.info("orders.webhook: commande déjà enregistrée pi=%s", payment_intent)
        return {"status": "duplicate"}

    metadata = meta.session_metadata(session)
    items = meta.decode_items(metadata.get("items"))
    if not items:
        raise WebhookPayloadError("Articles absents des métadonnées de session")

    referral_code = referrals_repo.normalize_code(metadata.get("referral_code")) or None
    try:
        discount_amount = policy.money(metadata.get("discount_amount") or 0)
    except (TypeError, ValueError):
        discount_amount = 0.0

    customer = session.get("customer_details") or {}
    email = customer.get("email") or session.get("customer_email")
    user_id = users_repo.get_user_id_by_email(email) if email else None

    referrer = referrals_repo.find_referrer_by_code(referral_code, strict=True) if referral_code else None
    if referral_code and not referrer:
        logger.warning("orders.webhook: code de parrainage non résolu code=%s pi=%s", referral_code, payment_intent)

    order = repository.insert_order({
        "user_id": user_id,
        "customer_email": email,
        "customer_name": customer.get("name"),
        "total_amount": policy.from_cents(session.get("amount_total")),
        "currency": (session.get("currency") or "").lower(),
        "status": "completed",
        "stripe_payment_intent_id": payment_intent,
        "stripe_session_id": session.get("id"),
        "items": items,
        "shipping_address": _shipping_address(session),
        "referrer_id": referrer.get("id") if referrer else None,
        "referral_code_used": referral_code,
        "discount_amount": discount_amount,
    })
    if order is None:
        logger.info("orders.webhook: insertion concurrente détectée pi=%s", payment_intent)
        return {"status": "duplicate"}

    result: Dict[str, Any] = {"status": "created", "order_id": order["id"], "referral_recorded": False}
    if referrer:
        subtotal = meta.items_subtotal(items)
        usage = repository.insert_referral_usage({
            "referrer_id": referrer["id"],
            "order_id": order["id"],
            "referee_email": email,
            "discount_amount": discount_amount,
            "commission_percentage": policy.REFERRAL_COMMISSION_PERCENT,
            "commission_amount": policy.referral_commission(subtotal),
            "payout_status": "pending",
        })
        if usage is None:
            logger.error("orders.webhook: parrainage non enregistré order_id=%s referrer_id=%s", order["id"], referrer["id"])
        result["referral_recorded"] = usage is not None

    logger.info("orders.webhook: commande créée order_id=%s pi=%s", order["id"], payment_intent)
    return result

def is_session_confirmed(session_id: str) -> bool:
    return repository.get_order_by_session_id(session_id) is not None
