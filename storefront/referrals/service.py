"""
Validation d'un code de parrainage.
Lecture seule et idempotente: même code et même total donnent toujours le même résultat.
"""
from typing import Any, Dict, Optional
import logging

from storefront import policy
from storefront.referrals import repository as repo

logger = logging.getLogger(__name__)

INVALID_CODE_MESSAGE = "Code de parrainage invalide"

class ReferralValidation:
    def __init__(
        self,
        success: bool,
        order_total: float,
        referrer_id: Optional[str] = None,
        referrer_name: Optional[str] = None,
        code: Optional[str] = None,
        discount_percent: int = 0,
        discount_amount: float = 0.0,
        error: Optional[str] = None,
    ):
        self.success = success
        self.referrer_id = referrer_id
        self.referrer_name = referrer_name
        self.code = code
        self.discount_percent = discount_percent
        self.discount_amount = discount_amount
        self.final_total = policy.money(order_total - discount_amount)
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error, "discount_amount": 0}
        return {
            "success": True,
            "referrer_id": self.referrer_id,
            "referrer_name": self.referrer_name,
            "discount_percent": self.discount_percent,
            "discount_amount": self.discount_amount,
            "final_total": self.final_total,
        }

def validate(code: Optional[str], order_total: float) -> ReferralValidation:
    """
    Vérifie le code (insensible à la casse, correspondance exacte) et calcule la remise:
    10% du total, arrondie au centime. Code inconnu: échec, remise nulle, message générique.
    """
    normalized = repo.normalize_code(code)
    total = policy.money(order_total)
    referrer = repo.find_referrer_by_code(normalized) if normalized else None
    if not referrer:
        logger.info("referrals.validate: code inconnu")
        return ReferralValidation(False, total, error=INVALID_CODE_MESSAGE)
    return ReferralValidation(
        True,
        total,
        referrer_id=referrer.get("id"),
        referrer_name=referrer.get("display_name"),
        code=normalized,
        discount_percent=policy.REFERRAL_DISCOUNT_PERCENT,
        discount_amount=policy.referral_discount(total),
    )
