"""Couche service du domaine Utilisateurs.
- Résolution de l'utilisateur courant depuis un access token Supabase
- Gains de parrainage de l'utilisateur (page profil)
"""
from typing import Any, Dict, List, Optional
from storefront import policy
from storefront.orders import repository as orders_repo
from . import repository

def determine_role(metadata: Optional[Dict[str, Any]]) -> str:
    if str((metadata or {}).get("role", "")).lower() == "admin":
        return "admin"
    return "user"

def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Normalise user issu de supabase.auth.get_user(access_token):
    - Retourne {id, email, metadata, role, token}
    - Le rôle est lu dans app_metadata (modifiable uniquement côté serveur), sinon user_metadata
    """
    raw = repository.get_user_from_access_token(access_token)
    metadata = raw.get("user_metadata") or {}
    role = determine_role(raw.get("app_metadata") or metadata)
    return {"id": raw.get("id"), "email": raw.get("email"), "metadata": metadata, "role": role, "token": access_token}

def summarize_referral_earnings(usages: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Agrège les commissions d'un parrain:
    - pending: commissions en attente ou approuvées (non encore versées)
    - paid: commissions versées
    """
    pending = 0.0
    paid = 0.0
    for u in usages:
        amount = float(u.get("commission_amount") or 0)
        if u.get("payout_status") == "paid":
            paid += amount
        else:
            pending += amount
    pending = policy.money(pending)
    return {
        "total_referrals": len(usages),
        "pending_commission": pending,
        "paid_commission": policy.money(paid),
        "payout_minimum": policy.PAYOUT_MINIMUM,
        "payout_minimum_reached": pending >= policy.PAYOUT_MINIMUM,
    }

def get_referral_earnings(user_id: str) -> Dict[str, Any]:
    profile = repository.get_profile(user_id) or {}
    usages = orders_repo.fetch_referral_usage_for_referrer(user_id)
    summary = summarize_referral_earnings(usages)
    summary["referral_code"] = profile.get("referral_code")
    summary["referrals"] = usages
    return summary
