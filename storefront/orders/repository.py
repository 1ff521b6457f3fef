"""Couche d’accès aux données (Supabase, client service-role) du registre des commandes.
Tables: orders, referral_usage, referral_payouts.
- Lectures: erreurs journalisées, valeurs neutres ([] / None), sauf les lignes à verser (LedgerUnavailableError)
- Écritures du webhook: la ligne créée, None sur violation d'unicité (23505), sinon exception
"""
from typing import Any, Dict, List, Optional
import logging
from postgrest.exceptions import APIError
from storefront.errors import LedgerUnavailableError, OrderPersistenceError
from storefront.infra.supabase_client import get_service_supabase

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

def _api_error_code(e: APIError) -> Optional[str]:
    code = getattr(e, "code", None)
    if not code and e.args and isinstance(e.args[0], dict):
        code = e.args[0].get("code")
    return code

def _first(res) -> Optional[Dict[str, Any]]:
    data = getattr(res, "data", None) or []
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict):
        return data
    return None

# --- Commandes ---

def find_order_by_payment_intent(payment_intent_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            get_service_supabase()
            .table("orders")
            .select("id")
            .eq("stripe_payment_intent_id", payment_intent_id)
            .limit(1)
            .execute()
        )
        return _first(res)
    except Exception:
        # La contrainte UNIQUE sur stripe_payment_intent_id reste le filet de sécurité
        logger.exception("orders.repository.find_order_by_payment_intent failed pi=%s", payment_intent_id)
        return None

def insert_order(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Insère une commande.
    Retour: la ligne créée, ou None si une commande existe déjà pour ce payment_intent (23505).
    Lève OrderPersistenceError pour toute autre erreur (le webhook répond 500, Stripe relivre).
    """
    try:
        res = get_service_supabase().table("orders").insert(data).execute()
    except APIError as e:
        if _api_error_code(e) == UNIQUE_VIOLATION:
            return None
        logger.exception("orders.repository.insert_order failed pi=%s", data.get("stripe_payment_intent_id"))
        raise OrderPersistenceError("Enregistrement de la commande impossible") from e
    except Exception as e:
        logger.exception("orders.repository.insert_order failed pi=%s", data.get("stripe_payment_intent_id"))
        raise OrderPersistenceError("Enregistrement de la commande impossible") from e
    row = _first(res)
    if not row or not row.get("id"):
        raise OrderPersistenceError("Commande insérée sans identifiant retourné")
    return row

def fetch_orders(limit: int = 100) -> List[Dict[str, Any]]:
    try:
        res = (
            get_service_supabase()
            .table("orders")
            .select("*")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.fetch_orders failed")
        return []

def get_order_by_session_id(session_id: str) -> Optional[Dict[str, Any]]:
    try:
        res = (
            get_service_supabase()
            .table("orders")
            .select("id, status, total_amount, currency, created_at")
            .eq("stripe_session_id", session_id)
            .limit(1)
            .execute()
        )
        return _first(res)
    except Exception:
        logger.exception("orders.repository.get_order_by_session_id failed id=%s", session_id)
        return None

# --- Parrainages (referral_usage) ---

def insert_referral_usage(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        res = get_service_supabase().table("referral_usage").insert(data).execute()
        return _first(res) or dict(data)
    except Exception:
        logger.exception("orders.repository.insert_referral_usage failed order_id=%s", data.get("order_id"))
        return None

def fetch_referral_usage(limit: int = 200) -> List[Dict[str, Any]]:
    """Usages de parrainage joints au total de la commande."""
    try:
        res = (
            get_service_supabase()
            .table("referral_usage")
            .select("*, orders(total_amount, currency, created_at)")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.fetch_referral_usage failed")
        return []

def fetch_referral_usage_for_referrer(referrer_id: str) -> List[Dict[str, Any]]:
    if not referrer_id:
        return []
    try:
        res = (
            get_service_supabase()
            .table("referral_usage")
            .select("*")
            .eq("referrer_id", referrer_id)
            .order("created_at", desc=True)
            .execute()
        )
        return res.data or []
    except Exception:
        logger.exception("orders.repository.fetch_referral_usage_for_referrer failed referrer_id=%s", referrer_id)
        return []

def fetch_referral_usage_by_ids(usage_ids: List[str]) -> List[Dict[str, Any]]:
    """Lignes à verser; une erreur de lecture lève LedgerUnavailableError (jamais confondue avec des lignes absentes)."""
    if not usage_ids:
        return []
    try:
        res = (
            get_service_supabase()
            .table("referral_usage")
            .select("*")
            .in_("id", usage_ids)
            .execute()
        )
        return res.data or []
    except Exception as e:
        logger.exception("orders.repository.fetch_referral_usage_by_ids failed")
        raise LedgerUnavailableError("Registre des commissions indisponible, réessayez plus tard") from e

def approve_referral_usage(usage_id: str) -> Optional[Dict[str, Any]]:
    """pending -> approved (sans effet sur une ligne déjà approuvée ou payée)."""
    try:
        res = (
            get_service_supabase()
            .table("referral_usage")
            .update({"payout_status": "approved"})
            .eq("id", usage_id)
            .eq("payout_status", "pending")
            .execute()
        )
        return _first(res)
    except Exception:
        logger.exception("orders.repository.approve_referral_usage failed id=%s", usage_id)
        return None

def mark_referral_usage_paid(usage_ids: List[str], referrer_id: str, method: str,
                             reference: Optional[str], paid_at: str) -> List[Dict[str, Any]]:
    """
    Bascule les lignes en 'paid' en une seule requête conditionnelle
    (UPDATE ... WHERE id IN (...) AND referrer_id = ... AND payout_status <> 'paid').
    Retourne les lignes effectivement modifiées; lève en cas d'erreur.
    """
    res = (
        get_service_supabase()
        .table("referral_usage")
        .update({
            "payout_status": "paid",
            "payout_method": method,
            "payout_reference": reference,
            "payout_date": paid_at,
        })
        .in_("id", usage_ids)
        .eq("referrer_id", referrer_id)
        .neq("payout_status", "paid")
        .execute()
    )
    return res.data or []

# --- Versements (referral_payouts) ---

def insert_payout(data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        res = get_service_supabase().table("referral_payouts").insert(data).execute()
        return _first(res) or dict(data)
    except Exception:
        logger.exception("orders.repository.insert_payout failed referrer_id=%s", data.get("referrer_id"))
        return None

def fetch_payouts(limit: int = 100, referrer_id: Optional[str] = None) -> List[Dict[str, Any]]:
    try:
        query = get_service_supabase().table("referral_payouts").select("*")
        if referrer_id:
            query = query.eq("referrer_id", referrer_id)
        res = query.order("paid_at", desc=True).limit(limit).execute()
        return res.data or []
    except Exception:
        logger.exception("orders.repository.fetch_payouts failed")
        return []
