# module storefront.checkout.views
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from storefront.cart.session import clear_session_cart, load_cart, save_cart
from storefront.checkout.confirmation import wait_for_confirmation
from storefront.checkout.service import make_orchestrator
from storefront.utils.rate_limit import optional_rate_limit
from storefront.utils.security import get_optional_user

router = APIRouter(prefix="/api/v1/checkout", tags=["Checkout"])

class CheckoutRequest(BaseModel):
    currency: Optional[str] = None
    referral_code: Optional[str] = None
    customer_email: Optional[str] = None
    next: str = "/checkout"

@router.post("", dependencies=[Depends(optional_rate_limit(times=10, seconds=60))])
def submit_checkout(
    payload: CheckoutRequest,
    request: Request,
    user: Optional[Dict[str, Any]] = Depends(get_optional_user),
):
    """
    Transforme le panier de session en session Stripe hébergée.
    - Succès: {"state": "redirected", "redirect_url", "session_id"}; panier vidé
    - Échec: erreur JSON (409 panier mixte, 400 code invalide / panier vide,
      401 + redirect_url pour un abonnement anonyme, 502 Stripe); panier conservé
    """
    cart = load_cart(request)
    orchestrator = make_orchestrator(cart, payload.currency)
    outcome = orchestrator.submit(
        user=user,
        referral_code=payload.referral_code,
        customer_email=payload.customer_email,
        next_path=payload.next,
    )
    if not outcome.ok:
        raise outcome.error
    save_cart(request, cart)
    return outcome.to_dict()

@router.get("/confirmation")
async def checkout_confirmation(request: Request, session_id: str = Query(min_length=1)):
    """Attend (borné) la commande issue du webhook; "confirmed" vide aussi le panier de session."""
    if await wait_for_confirmation(session_id):
        clear_session_cart(request)
        return {"status": "confirmed", "session_id": session_id}
    return {"status": "pending", "session_id": session_id}
