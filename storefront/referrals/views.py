from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storefront.referrals import service
from storefront.utils.rate_limit import optional_rate_limit

router = APIRouter(prefix="/api/v1/referrals", tags=["Referrals"])

class ValidateReferralRequest(BaseModel):
    referral_code: str = Field(min_length=1)
    customer_email: str = Field(min_length=3)
    order_total: float = Field(gt=0)

@router.post("/validate", dependencies=[Depends(optional_rate_limit(times=20, seconds=60))])
def validate_referral(payload: ValidateReferralRequest):
    """
    Valide un code de parrainage pour un total de commande.
    - 200 {success, referrer_id, referrer_name, discount_percent, discount_amount, final_total}
    - 400 {success: false, error, discount_amount: 0} si le code est inconnu
    """
    result = service.validate(payload.referral_code, payload.order_total)
    return JSONResponse(result.to_dict(), status_code=200 if result.success else 400)
