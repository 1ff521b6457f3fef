# module storefront.admin.service
"""
Back-office du registre: lectures (commandes, parrainages, statistiques par parrain)
et actions d'écriture admin (approbation d'une commission, versement groupé).
"""
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
import logging

from storefront import policy
from storefront.errors import PayoutError, PayoutValidationError
from storefront.orders import repository as ledger

logger = logging.getLogger(__name__)

def list_orders(limit: int = 100) -> List[dict]:
    return ledger.fetch_orders(limit=limit)

def list_referral_usage(limit: int = 200) -> List[dict]:
    return ledger.fetch_referral_usage(limit=limit)

def list_payouts(limit: int = 100, referrer_id: Optional[str] = None) -> List[dict]:
    return ledger.fetch_payouts(limit=limit, referrer_id=referrer_id)

def aggregate_referrer_stats(usages: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Statistiques par parrain: nombre de parrainages, remises accordées,
    commissions en attente (pending+approved), versées, et seuil de versement atteint.
    """
    stats: Dict[str, Dict[str, Any]] = {}
    for u in usages:
        rid = str(u.get("referrer_id") or "")
        if not rid:
            continue
        s = stats.setdefault(rid, {
            "referrer_id": rid,
            "total_referrals": 0,
            "total_discount": 0.0,
            "total_commission": 0.0,
            "pending_commission": 0.0,
            "paid_commission": 0.0,
        })
        amount = float(u.get("commission_amount") or 0)
        s["total_referrals"] += 1
        s["total_discount"] += float(u.get("discount_amount") or 0)
        s["total_commission"] += amount
        if u.get("payout_status") == "paid":
            s["paid_commission"] += amount
        else:
            s["pending_commission"] += amount

    result = []
    for s in stats.values():
        for key in ("total_discount", "total_commission", "pending_commission", "paid_commission"):
            s[key] = policy.money(s[key])
        s["payout_minimum_reached"] = s["pending_commission"] >= policy.PAYOUT_MINIMUM
        result.append(s)
    return sorted(result, key=lambda s: s["pending_commission"], reverse=True)

def referral_stats() -> List[Dict[str, Any]]:
    return aggregate_referrer_stats(ledger.fetch_referral_usage(limit=1000))

def approve_referral(usage_id: str) -> Dict[str, Any]:
    row = ledger.approve_referral_usage(usage_id)
    if not row:
        raise PayoutError("Commission introuvable ou déjà traitée")
    return row

def create_payout(
    referrer_id: str,
    usage_ids: List[str],
    method: str,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Verse les commissions sélectionnées d'un parrain.
    Préconditions: lignes existantes, appartenant au parrain, non versées,
    somme des commissions >= PAYOUT_MINIMUM (inclus).
    Les lignes passent à 'paid' en une seule mise à jour conditionnelle; si certaines n'ont pas
    été modifiées (versement concurrent), le versement ne couvre que les lignes modifiées
    et la réponse signale l'échec partiel.
    """
    ids = list(dict.fromkeys(str(i) for i in usage_ids or [] if i))
    if not referrer_id or not ids:
        raise PayoutValidationError("Parrain et commissions à verser requis")
    if not (method or "").strip():
        raise PayoutValidationError("Mode de versement requis")

    rows = {str(r.get("id")): r for r in ledger.fetch_referral_usage_by_ids(ids)}
    missing = [i for i in ids if i not in rows]
    if missing:
        raise PayoutValidationError("Commissions introuvables", extra={"usage_ids": missing})
    foreign = [i for i in ids if str(rows[i].get("referrer_id")) != str(referrer_id)]
    if foreign:
        raise PayoutValidationError("Commissions d'un autre parrain", extra={"usage_ids": foreign})
    already_paid = [i for i in ids if rows[i].get("payout_status") == "paid"]
    if already_paid:
        raise PayoutError("Commissions déjà versées", extra={"usage_ids": already_paid})

    total = policy.money(sum(float(rows[i].get("commission_amount") or 0) for i in ids))
    if total < policy.PAYOUT_MINIMUM:
        raise PayoutValidationError(
            f"Montant minimum de versement non atteint ({total:.2f} < {policy.PAYOUT_MINIMUM:.2f})",
            extra={"total_amount": total},
        )

    paid_at = datetime.now(timezone.utc).isoformat()
    try:
        updated = ledger.mark_referral_usage_paid(ids, referrer_id, method, reference, paid_at)
    except Exception as e:
        logger.exception("admin.service.create_payout: mise à jour des commissions échouée referrer_id=%s", referrer_id)
        raise PayoutError("Versement non enregistré, aucune commission modifiée") from e
    if not updated:
        raise PayoutError("Commissions déjà versées", extra={"usage_ids": ids})

    updated_ids = [str(r.get("id")) for r in updated]
    not_updated = [i for i in ids if i not in updated_ids]
    paid_total = policy.money(sum(float(r.get("commission_amount") or 0) for r in updated))

    payout = ledger.insert_payout({
        "referrer_id": referrer_id,
        "referral_usage_ids": updated_ids,
        "total_amount": paid_total,
        "currency": policy.PAYOUT_CURRENCY,
        "status": "paid",
        "payment_method": method,
        "payment_reference": reference,
        "notes": notes,
        "paid_at": paid_at,
    })
    if payout is None:
        logger.error("admin.service.create_payout: commissions versées sans ligne de versement ids=%s", updated_ids)

    partial = bool(not_updated) or payout is None
    if not_updated:
        logger.warning("admin.service.create_payout: versement partiel referrer_id=%s non_modifiées=%s", referrer_id, not_updated)
    return {
        "status": "partial" if partial else "paid",
        "payout": payout,
        "paid_usage_ids": updated_ids,
        "failed_usage_ids": not_updated,
        "total_amount": paid_total,
    }
