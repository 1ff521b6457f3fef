"""
Règles métier figées de la boutique (non configurables par code ou par campagne).
- Parrainage: 10% de remise client, 5% de commission parrain, versement à partir de 20.00
- Abonnements: paliers prédéfinis (5/10/20 unités) ou quantité libre (>= 5)
- Devises: taux fixes par rapport à la devise de référence du catalogue (USD)
- Livraison: deux forfaits exprimés en GBP (zone proche UK+UE, zone lointaine US)
"""
from typing import Dict, List, Optional, Tuple

from storefront.errors import InvalidSubscriptionSelection

# --- Parrainage ---
REFERRAL_DISCOUNT_PERCENT = 10
REFERRAL_COMMISSION_PERCENT = 5
PAYOUT_MINIMUM = 20.00
PAYOUT_CURRENCY = "gbp"

# --- Abonnements ---
SUBSCRIPTION_TIERS: Dict[str, Dict[str, int]] = {
    "5": {"quantity": 5, "discount_percent": 0},
    "10": {"quantity": 10, "discount_percent": 5},
    "20": {"quantity": 20, "discount_percent": 10},
}
CUSTOM_TIER = "custom"
CUSTOM_MIN_QUANTITY = 5
CUSTOM_DISCOUNT_PERCENT = 10
SUBSCRIPTION_INTERVAL = "month"

# --- Devises (catalogue en USD) ---
BASE_CURRENCY = "USD"
CURRENCIES: Dict[str, Dict[str, object]] = {
    "USD": {"symbol": "$", "rate": 1.0, "name": "US Dollar"},
    "EUR": {"symbol": "€", "rate": 0.85, "name": "Euro"},
    "GBP": {"symbol": "£", "rate": 0.73, "name": "British Pound"},
    "CAD": {"symbol": "C$", "rate": 1.35, "name": "Canadian Dollar"},
    "AUD": {"symbol": "A$", "rate": 1.45, "name": "Australian Dollar"},
}

# --- Livraison (montants en GBP) ---
SHIPPING_REFERENCE_CURRENCY = "GBP"
EU_COUNTRIES = [
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR",
    "DE", "GR", "HU", "IE", "IT", "LV", "LT", "LU", "MT", "NL",
    "PL", "PT", "RO", "SK", "SI", "ES", "SE",
]
NEAR_REGION = ["GB"] + EU_COUNTRIES
FAR_REGION = ["US"]
SHIPPING_RATES_GBP = {
    "near": 3.50,
    "far": 10.00,
}


def money(value: float) -> float:
    """Arrondi monétaire au centime."""
    return round(float(value) + 0.0, 2)


def to_cents(value: float) -> int:
    return int(round(float(value) * 100))


def from_cents(cents: Optional[int]) -> float:
    return money((cents or 0) / 100)


# --- Parrainage ---

def referral_discount(order_total: float) -> float:
    return money(float(order_total) * REFERRAL_DISCOUNT_PERCENT / 100)


def referral_commission(order_subtotal: float) -> float:
    return money(float(order_subtotal) * REFERRAL_COMMISSION_PERCENT / 100)


# --- Devises ---

def normalize_currency(code: Optional[str], default: str = BASE_CURRENCY) -> str:
    """Retourne un code devise connu (majuscules), sinon la devise par défaut."""
    c = (code or "").strip().upper()
    return c if c in CURRENCIES else default


def currency_rate(code: str) -> float:
    return float(CURRENCIES[normalize_currency(code)]["rate"])


def convert_price(amount: float, currency: str) -> float:
    """Convertit un montant de la devise catalogue (USD) vers `currency`."""
    return money(float(amount) * currency_rate(currency))


def format_price(amount: float, currency: str) -> str:
    """
    Formate un montant déjà converti: symbole + 2 décimales, zéros finaux retirés
    (ex: 28.00 -> "€28", 28.10 -> "€28.1").
    """
    code = normalize_currency(currency)
    symbol = str(CURRENCIES[code]["symbol"])
    text = f"{float(amount):.2f}".rstrip("0").rstrip(".")
    return f"{symbol}{text}"


# --- Livraison ---

def shipping_region(country_code: str) -> str:
    code = (country_code or "").strip().upper()
    if code in FAR_REGION:
        return "far"
    # Les pays hors liste prennent le tarif proche
    return "near"


def shipping_cost(region: str, currency: str) -> float:
    """
    Forfait de livraison converti de GBP vers la devise du checkout
    (GBP -> USD par division du taux GBP, puis USD -> devise cible).
    """
    gbp = SHIPPING_RATES_GBP[region]
    usd = gbp / currency_rate(SHIPPING_REFERENCE_CURRENCY)
    return convert_price(usd, currency)


def allowed_shipping_countries() -> List[str]:
    return NEAR_REGION + FAR_REGION


# --- Abonnements ---

def subscription_discount(quantity_type: str, quantity: int) -> Tuple[int, int]:
    """
    Valide une sélection d'abonnement et retourne (quantité, remise %).
    - Palier prédéfini: la quantité du palier fait foi.
    - Quantité libre: >= CUSTOM_MIN_QUANTITY, remise fixe CUSTOM_DISCOUNT_PERCENT.
    Lève InvalidSubscriptionSelection sinon.
    """
    qtype = str(quantity_type or "").strip().lower()
    if qtype in SUBSCRIPTION_TIERS:
        tier = SUBSCRIPTION_TIERS[qtype]
        return tier["quantity"], tier["discount_percent"]
    if qtype == CUSTOM_TIER:
        try:
            qty = int(quantity)
        except (TypeError, ValueError):
            qty = 0
        if qty < CUSTOM_MIN_QUANTITY:
            raise InvalidSubscriptionSelection(
                f"La quantité personnalisée doit être d'au moins {CUSTOM_MIN_QUANTITY} unités"
            )
        return qty, CUSTOM_DISCOUNT_PERCENT
    raise InvalidSubscriptionSelection(f"Formule d'abonnement inconnue: {quantity_type}")


def subscription_unit_price(base_price: float, discount_percent: int) -> float:
    return money(float(base_price) * (1 - discount_percent / 100))


def subscription_tier_for_quantity(quantity: int) -> str:
    """Palier prédéfini dont la quantité correspond, sinon quantité libre."""
    for name, tier in SUBSCRIPTION_TIERS.items():
        if tier["quantity"] == int(quantity):
            return name
    return CUSTOM_TIER
