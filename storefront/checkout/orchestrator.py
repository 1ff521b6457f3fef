"""
Orchestrateur de checkout: transforme un panier finalisé en session Stripe hébergée.
États: idle -> submitting -> redirected | failed.
Il ne lit ni n'écrit le registre des commandes (seul le webhook crée les commandes).
"""
import logging
import urllib.parse
from typing import Any, Callable, Dict, List, Optional

from storefront import policy
from storefront.cart.models import Cart
from storefront.config import DEFAULT_CURRENCY, LOGIN_PATH
from storefront.errors import (
    AuthenticationRequired,
    CartEmptyError,
    CartModeConflictError,
    CheckoutInProgressError,
    StorefrontError,
)

logger = logging.getLogger(__name__)

IDLE = "idle"
SUBMITTING = "submitting"
REDIRECTED = "redirected"
FAILED = "failed"

class CheckoutOutcome:
    def __init__(self, state: str, redirect_url: Optional[str] = None, session_id: Optional[str] = None,
                 error: Optional[StorefrontError] = None):
        self.state = state
        self.redirect_url = redirect_url
        self.session_id = session_id
        self.error = error

    @property
    def ok(self) -> bool:
        return self.state == REDIRECTED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"state": self.state, "redirect_url": self.redirect_url}
        if self.session_id:
            data["session_id"] = self.session_id
        if self.error is not None:
            data.update(self.error.to_dict())
        return data


class CheckoutOrchestrator:
    """
    Dépendances explicites:
    - cart: le panier de la session (vidé uniquement en cas de succès)
    - session_builder: expose create_one_time_session / create_subscription_session
      (storefront.payments.service en production, un double en test)
    - referral_validator: validate(code, total) -> ReferralValidation
    """

    def __init__(
        self,
        cart: Cart,
        session_builder: Any,
        referral_validator: Callable[[str, float], Any],
        *,
        success_url: str,
        cancel_url: str,
        subscription_success_url: str,
        subscription_cancel_url: str,
        currency: str = DEFAULT_CURRENCY,
        login_path: str = LOGIN_PATH,
    ):
        self.cart = cart
        self.session_builder = session_builder
        self.referral_validator = referral_validator
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.subscription_success_url = subscription_success_url
        self.subscription_cancel_url = subscription_cancel_url
        self.currency = policy.normalize_currency(currency)
        self.login_path = login_path
        self.state = IDLE

    def submit(
        self,
        user: Optional[Dict[str, Any]] = None,
        referral_code: Optional[str] = None,
        customer_email: Optional[str] = None,
        next_path: str = "/checkout",
    ) -> CheckoutOutcome:
        if self.state == SUBMITTING:
            raise CheckoutInProgressError("Un paiement est déjà en cours de préparation")
        self.state = SUBMITTING
        try:
            outcome = self._submit(user, referral_code, customer_email, next_path)
        except StorefrontError as e:
            outcome = CheckoutOutcome(FAILED, error=e)
        except Exception:
            self.state = FAILED
            raise
        self.state = outcome.state
        if outcome.ok:
            self.cart.clear()
        else:
            logger.info("checkout.submit failed code=%s", getattr(outcome.error, "code", None))
        return outcome

    def _submit(self, user, referral_code, customer_email, next_path) -> CheckoutOutcome:
        if self.cart.is_mixed():
            raise CartModeConflictError(
                "Votre panier mélange abonnement et articles: videz-le puis recommencez"
            )
        if self.cart.is_empty():
            raise CartEmptyError("Votre panier est vide")
        if self.cart.lines[0].is_subscription:
            return self._submit_subscription(user, next_path)
        return self._submit_one_time(user, referral_code, customer_email)

    def _submit_subscription(self, user, next_path) -> CheckoutOutcome:
        if not user or not user.get("id"):
            # Chemin relatif uniquement (pas de redirection ouverte)
            if not next_path.startswith("/") or next_path.startswith("//"):
                next_path = "/checkout"
            redirect = f"{self.login_path}?{urllib.parse.urlencode({'next': next_path})}"
            return CheckoutOutcome(
                FAILED,
                redirect_url=redirect,
                error=AuthenticationRequired("Connectez-vous pour souscrire un abonnement", redirect_url=redirect),
            )
        line = self.cart.lines[0]
        selector = dict(line.subscription_selector or {})
        selector.update({
            "product_id": line.product_id,
            "name": line.name,
            "quantity": line.quantity,
            "unit_price": policy.convert_price(line.unit_price, self.currency),
        })
        session = self.session_builder.create_subscription_session(
            user,
            selector,
            self.subscription_success_url,
            self.subscription_cancel_url,
            self.currency,
        )
        return CheckoutOutcome(REDIRECTED, redirect_url=session["url"], session_id=session.get("id"))

    def checkout_items(self) -> List[Dict[str, Any]]:
        """Lignes physiques converties dans la devise du checkout."""
        return [
            {
                "id": line.product_id,
                "variant_id": line.variant_id,
                "name": line.name,
                "color": line.color,
                "price": policy.convert_price(line.effective_unit_price, self.currency),
                "quantity": line.quantity,
                "image_url": line.image_url,
                "description": line.description,
            }
            for line in self.cart.lines
        ]

    def _submit_one_time(self, user, referral_code, customer_email) -> CheckoutOutcome:
        items = self.checkout_items()
        total = policy.money(sum(it["price"] * it["quantity"] for it in items))
        email = customer_email or (user or {}).get("email")

        code = None
        discount = None
        if referral_code and referral_code.strip():
            validation = self.referral_validator(referral_code, total)
            if not validation.success:
                return CheckoutOutcome(FAILED, error=StorefrontError(validation.error, code="invalid_referral_code"))
            code = validation.code
            discount = validation.discount_amount

        session = self.session_builder.create_one_time_session(
            items,
            self.currency,
            self.success_url,
            self.cancel_url,
            referral_code=code,
            discount_amount=discount,
            customer_email=email,
        )
        return CheckoutOutcome(REDIRECTED, redirect_url=session["url"], session_id=session.get("id"))
