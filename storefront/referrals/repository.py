# module storefront.referrals.repository
from typing import Any, Dict, Optional
import logging
from storefront.errors import OrderPersistenceError
from storefront.infra.supabase_client import get_service_supabase

logger = logging.getLogger(__name__)

def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()

def find_referrer_by_code(code: str, strict: bool = False) -> Optional[Dict[str, Any]]:
    """
    Profil propriétaire du code (profiles.referral_code, stocké en majuscules).
    Retourne {id, display_name} ou None si le code est inconnu.
    Erreur de lecture: None (validation au checkout), ou OrderPersistenceError si strict
    (le webhook répond 500 avant d'écrire la commande, Stripe relivre).
    """
    normalized = normalize_code(code)
    if not normalized:
        return None
    try:
        res = (
            get_service_supabase()
            .table("profiles")
            .select("id, display_name")
            .eq("referral_code", normalized)
            .limit(1)
            .execute()
        )
    except Exception as e:
        logger.exception("referrals.repository.find_referrer_by_code failed code=%s", normalized)
        if strict:
            raise OrderPersistenceError("Lecture du parrain impossible") from e
        return None
    rows = res.data or []
    return rows[0] if rows else None
