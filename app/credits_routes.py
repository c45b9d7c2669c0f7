"""
Credits Routes
Federal and state credit picture for the signed-in customer.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.auth_permissions import CustomerSession, get_customer_session
from app.credit_estimate_engine import CreditEstimateEngine, federal_rate_for_profile
from app.ledger_service import LedgerService, get_ledger_service
from app.ledger_store import RecordStoreUnavailable
from app.qre_engine import summarize_ledger
from app.router_utils import wrap_response
from app.supabase_client import get_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/credits", tags=["credits"])


class CreditsRequest(BaseModel):
    # Opt in to the business-profile rate instead of the configured one
    useProfileRate: bool = False
    yearsInBusiness: Optional[float] = Field(default=None, ge=0)
    hadRevenueThreeYearsAgo: bool = False


@router.post("/calculate")
async def calculate_credits(
    request: Optional[CreditsRequest] = None,
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """Federal credit, state credits and payroll tax offset for the current ledger."""
    try:
        ledger = await service.get_ledger(session.email)
    except RecordStoreUnavailable:
        raise HTTPException(status_code=503, detail="Record store unavailable")
    except Exception as e:
        logger.error(f"Failed to load ledger for {session.email}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load expenses")

    summary = summarize_ledger(ledger)
    engine = CreditEstimateEngine(get_supabase(), session.customer)

    rate = None
    profile = None
    if request and request.useProfileRate:
        engine.load_data()
        profile = federal_rate_for_profile({
            "years_in_business": request.yearsInBusiness,
            "annual_revenue": engine.company_info()["annualRevenue"],
            "had_revenue_three_years_ago": request.hadRevenueThreeYearsAgo,
        })
        rate = profile["rate"]

    credits = engine.compute_credits(summary.grand_total, rate=rate)
    if profile:
        credits["federalCredit"]["classification"] = profile["classification"]
        credits["federalCredit"]["methodName"] = profile["name"]

    return wrap_response(credits)
