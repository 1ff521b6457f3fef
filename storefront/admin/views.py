# module storefront.admin.views
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from storefront.admin import service as admin_service
from storefront.utils.security import require_admin

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])

class PayoutRequest(BaseModel):
    referrer_id: str
    usage_ids: List[str] = Field(min_length=1)
    payment_method: str = Field(min_length=1)
    payment_reference: Optional[str] = None
    notes: Optional[str] = None

@router.get("/orders")
def admin_orders(limit: int = Query(default=100, ge=1, le=500), user: Dict[str, Any] = Depends(require_admin)):
    return admin_service.list_orders(limit=limit)

@router.get("/referrals")
def admin_referrals(limit: int = Query(default=200, ge=1, le=1000), user: Dict[str, Any] = Depends(require_admin)):
    return admin_service.list_referral_usage(limit=limit)

@router.get("/referrals/stats")
def admin_referral_stats(user: Dict[str, Any] = Depends(require_admin)):
    return admin_service.referral_stats()

@router.get("/referrals/payouts")
def admin_payouts(referrer_id: Optional[str] = None, user: Dict[str, Any] = Depends(require_admin)):
    return admin_service.list_payouts(referrer_id=referrer_id)

@router.post("/referrals/payouts")
def admin_create_payout(payload: PayoutRequest, user: Dict[str, Any] = Depends(require_admin)):
    """
    Verse les commissions sélectionnées d'un parrain (statut 'paid' + ligne referral_payouts).
    - 400: lignes inconnues, d'un autre parrain, ou minimum non atteint
    - 409: lignes déjà versées (pas de double versement)
    """
    return admin_service.create_payout(
        payload.referrer_id,
        payload.usage_ids,
        payload.payment_method,
        reference=payload.payment_reference,
        notes=payload.notes,
    )

@router.post("/referrals/{usage_id}/approve")
def admin_approve_referral(usage_id: str, user: Dict[str, Any] = Depends(require_admin)):
    return admin_service.approve_referral(usage_id)
