"""
Exceptions métier de la boutique.
Chaque erreur porte un status_code HTTP, un message destiné à l'utilisateur (detail)
et un code machine; storefront.app_setup.exceptions les rend en JSON.
"""
from typing import Any, Dict, Optional


class StorefrontError(Exception):
    status_code = 400
    code = "storefront_error"

    def __init__(self, detail: str, *, code: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(detail)
        self.detail = detail
        if code:
            self.code = code
        self.extra = extra or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.detail, "code": self.code, **self.extra}


# --- Panier ---

class CartModeConflictError(StorefrontError):
    status_code = 409
    code = "cart_mode_conflict"


class CartEmptyError(StorefrontError):
    code = "cart_empty"


class ProductNotFoundError(StorefrontError):
    status_code = 404
    code = "product_not_found"


class InvalidSubscriptionSelection(StorefrontError):
    code = "invalid_subscription_selection"


# --- Checkout ---

class AuthenticationRequired(StorefrontError):
    status_code = 401
    code = "authentication_required"

    def __init__(self, detail: str, redirect_url: str):
        super().__init__(detail, extra={"redirect_url": redirect_url})
        self.redirect_url = redirect_url


class CheckoutInProgressError(StorefrontError):
    status_code = 409
    code = "checkout_in_progress"


class EmailRequiredError(StorefrontError):
    code = "email_required"


class PaymentProviderError(StorefrontError):
    status_code = 502
    code = "payment_provider_error"


class CheckoutSessionNotFound(StorefrontError):
    status_code = 404
    code = "session_not_found"


# --- Webhook / registre ---

class WebhookSignatureError(StorefrontError):
    code = "invalid_signature"


class WebhookPayloadError(StorefrontError):
    code = "invalid_payload"


class OrderPersistenceError(StorefrontError):
    status_code = 500
    code = "order_persistence_failed"


class LedgerUnavailableError(StorefrontError):
    status_code = 503
    code = "ledger_unavailable"


class PayoutError(StorefrontError):
    status_code = 409
    code = "payout_rejected"


class PayoutValidationError(PayoutError):
    status_code = 400
    code = "payout_invalid"
