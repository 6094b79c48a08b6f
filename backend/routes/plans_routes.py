"""
Plan Routes
Public tier catalogue for the pricing page (hidden promo tiers excluded).
"""
from fastapi import APIRouter

from config.plans import DEFAULT_PLAN, public_plans

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("")
def list_plans():
    return {"ok": True, "default": DEFAULT_PLAN, "plans": public_plans()}
