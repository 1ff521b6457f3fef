import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storefront.checkout.service import cart_from_items, make_orchestrator, subscription_cart
from storefront.errors import CartEmptyError
from storefront.orders import service as orders_service
from storefront.payments import service as payments_service
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import get_optional_user, require_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["Payments API"])

# module storefront.payments.views
class CheckoutItem(BaseModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)

class CheckoutSessionRequest(BaseModel):
    items: List[CheckoutItem]
    currency: Optional[str] = None
    referral_code: Optional[str] = None
    customer_email: Optional[str] = None

class SubscriptionSessionRequest(BaseModel):
    product_id: str
    quantity_type: str
    quantity: Optional[int] = None
    currency: Optional[str] = None

@router.post("/checkout-session", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_checkout_session(
    payload: CheckoutSessionRequest,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
):
    """
    Crée une session Checkout (paiement unique) depuis une liste d'articles du catalogue.
    - Entrée JSON: {"items": [{"product_id", "variant_id"?, "quantity"}], "currency"?, "referral_code"?, "customer_email"?}
    - Les prix sont relus dans le catalogue; le code de parrainage est revalidé côté serveur
    - Réponse: {"id", "url"}
    """
    if not payload.items:
        raise CartEmptyError("Aucun article à payer")
    cart = cart_from_items([it.model_dump() for it in payload.items])
    outcome = make_orchestrator(cart, payload.currency).submit(
        user=user,
        referral_code=payload.referral_code,
        customer_email=payload.customer_email,
    )
    if not outcome.ok:
        raise outcome.error
    return {"id": outcome.session_id, "url": outcome.redirect_url}

@router.post("/subscription-session", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def create_subscription_session(payload: SubscriptionSessionRequest, user: Dict[str, Any] = Depends(require_user)):
    """
    Crée une session Checkout en mode abonnement pour l'utilisateur authentifié.
    - Formules: "5", "10", "20" ou "custom" (quantity >= 5)
    - Réponse: {"id", "url"}
    """
    cart = subscription_cart(payload.product_id, payload.quantity_type, payload.quantity)
    outcome = make_orchestrator(cart, payload.currency).submit(user=user, next_path="/subscriptions")
    if not outcome.ok:
        raise outcome.error
    return {"id": outcome.session_id, "url": outcome.redirect_url}

@router.post("/webhook", include_in_schema=False)
async def webhook_stripe(request: Request):
    """
    Webhook Stripe (Checkout): checkout.session.completed crée la commande.
    - Signature: Stripe-Signature vérifiée sur le corps brut avant tout traitement (400 sinon)
    - Réponses: {"received": true, "status": "created" | "duplicate" | "ignored"}
    - Erreur de persistance: 500 pour que Stripe relivre l'événement
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    result = orders_service.handle_webhook(payload, sig_header)
    return JSONResponse({"received": True, **result})

@router.get("/sessions/{session_id}")
def get_checkout_session(session_id: str):
    """Détail d'une session pour la page de succès: {session_id, payment_intent, payment_status, customer_details, metadata}."""
    return payments_service.get_session_summary(session_id)
