"""Couche d’accès aux données (Supabase) pour le domaine Utilisateurs.
Table profiles (id, email, display_name, referral_code) et Supabase Auth.
Les exceptions sont « catchées » et transformées en valeurs neutres (None) afin de ne pas casser l’UX.
"""
from typing import Any, Dict, Optional
import logging
from storefront.infra.supabase_client import get_supabase, get_service_supabase

logger = logging.getLogger(__name__)

def get_user_from_access_token(access_token: str) -> Dict[str, Any]:
    """Récupère et normalise l’utilisateur depuis supabase.auth.get_user(access_token)."""
    res = get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None) or {}
    if not isinstance(user, dict):
        user = {
            "id": getattr(user, "id", None),
            "email": getattr(user, "email", None),
            "user_metadata": getattr(user, "user_metadata", None),
            "app_metadata": getattr(user, "app_metadata", None),
        }
    return user or {}

def get_profile(user_id: str) -> Optional[Dict[str, Any]]:
    """Profil applicatif (display_name, referral_code) ou None."""
    if not user_id:
        return None
    try:
        res = (
            get_service_supabase()
            .table("profiles")
            .select("id, email, display_name, referral_code")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0] if rows else None
    except Exception:
        logger.exception("users.repository.get_profile failed id=%s", user_id)
        return None

def get_user_id_by_email(email: str) -> Optional[str]:
    """Identifiant du compte dont l'email correspond (emails stockés en minuscules), sinon None."""
    cleaned = (email or "").strip().lower()
    if not cleaned:
        return None
    try:
        res = (
            get_service_supabase()
            .table("profiles")
            .select("id")
            .eq("email", cleaned)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return rows[0].get("id") if rows else None
    except Exception:
        logger.exception("users.repository.get_user_id_by_email failed")
        return None
