from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.database import get_db
from models import PricingPlan
from schemas import PricingPlanResponse

router = APIRouter(prefix="/v1/pricing-plans", tags=["pricing"])


@router.get("", response_model=List[PricingPlanResponse])
def list_pricing_plans(
    active: Optional[bool] = Query(True, description="Only plans currently on sale"),
    db: Session = Depends(get_db),
):
    """Public plan list for the pricing page."""
    q = db.query(PricingPlan)
    if active is not None:
        q = q.filter(PricingPlan.is_active.is_(active))
    return q.order_by(PricingPlan.sort_order.asc()).all()
