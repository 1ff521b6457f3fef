# module storefront.users.views
from typing import Any, Dict
from fastapi import APIRouter, Depends
from storefront.utils.security import require_user
from . import service

router = APIRouter(prefix="/api/v1/users", tags=["Users API"])

@router.get("/me")
def api_me(user: Dict[str, Any] = Depends(require_user)):
    return {"id": user.get("id"), "email": user.get("email"), "role": user.get("role")}

@router.get("/me/referrals")
def api_my_referrals(user: Dict[str, Any] = Depends(require_user)):
    """Code de parrainage et gains (total, en attente, versés, seuil de versement atteint)."""
    return service.get_referral_earnings(user.get("id"))
