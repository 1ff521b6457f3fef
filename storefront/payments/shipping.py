"""
Options de livraison Stripe (mode paiement unique).
Deux forfaits fixes exprimés en GBP, convertis dans la devise du checkout.
"""
from typing import Any, Dict, List
from storefront import policy

REGION_LABELS = {
    "near": "Livraison Royaume-Uni & UE",
    "far": "Livraison États-Unis",
}
DELIVERY_ESTIMATES = {
    "near": ({"unit": "business_day", "value": 3}, {"unit": "business_day", "value": 7}),
    "far": ({"unit": "business_day", "value": 7}, {"unit": "business_day", "value": 14}),
}

def shipping_options(currency: str) -> List[Dict[str, Any]]:
    options: List[Dict[str, Any]] = []
    for region in ("near", "far"):
        minimum, maximum = DELIVERY_ESTIMATES[region]
        options.append({
            "shipping_rate_data": {
                "type": "fixed_amount",
                "fixed_amount": {
                    "amount": policy.to_cents(policy.shipping_cost(region, currency)),
                    "currency": currency.lower(),
                },
                "display_name": REGION_LABELS[region],
                "delivery_estimate": {"minimum": minimum, "maximum": maximum},
                "metadata": {"region": region},
            }
        })
    return options

def shipping_address_collection() -> Dict[str, Any]:
    return {"allowed_countries": policy.allowed_shipping_countries()}
