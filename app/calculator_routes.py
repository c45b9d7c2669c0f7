"""
Calculator & Pricing Routes
Public endpoints behind the marketing calculator and the checkout page.
No authentication.
"""

import logging

from fastapi import APIRouter, HTTPException

from app.credit_estimate_engine import estimate_credit, get_documentation_level
from app.pricing_engine import (
    PRICING_TIERS,
    ADDITIONAL_YEAR_PRICE,
    MAX_ADDITIONAL_YEARS,
    PricingError,
    calculate_roi,
    get_eligible_years,
    get_multi_year_savings,
    get_tier_number,
    quote_for_years,
)
from app.qre_engine import quick_estimate_ledger, summarize_ledger
from app.schemas import CalculatorInput, QuoteRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["calculator"])


@router.post("/calculator/estimate")
async def calculator_estimate(request: CalculatorInput):
    """
    Quick estimate from category totals. Uses the same qualification rules,
    federal rate and price tiers as the expense ledger.
    """
    ledger = quick_estimate_ledger(
        wages=request.wages,
        wage_rd_percent=request.wageRdPercent,
        contractors=request.contractors,
        supplies=request.supplies,
        supplies_rd_percent=request.suppliesRdPercent,
        cloud_monthly=request.cloudMonthly,
        cloud_rd_percent=request.cloudRdPercent,
    )
    summary = summarize_ledger(ledger)
    estimate = estimate_credit(summary, additional_years=request.additionalYears)

    return {
        "summary": summary.to_dict(),
        "estimate": estimate.to_dict(),
        "tierNumber": get_tier_number(estimate.federal_credit),
        "roi": calculate_roi(estimate.federal_credit, estimate.price),
        "documentation": get_documentation_level(estimate.federal_credit),
    }


@router.get("/pricing/tiers")
async def pricing_tiers():
    return {
        "tiers": [tier.to_dict() for tier in PRICING_TIERS],
        "additionalYearPrice": ADDITIONAL_YEAR_PRICE,
        "maxAdditionalYears": MAX_ADDITIONAL_YEARS,
    }


@router.get("/pricing/eligible-years")
async def eligible_years():
    return {"years": get_eligible_years()}


@router.post("/pricing/quote")
async def pricing_quote(request: QuoteRequest):
    """Price a filing for the selected tax years."""
    try:
        quote = quote_for_years(request.creditAmount, request.selectedYears, request.stateCredits)
    except PricingError as e:
        raise HTTPException(status_code=400, detail=str(e))

    quote["multiYearSavings"] = get_multi_year_savings([y["year"] for y in quote["selectedYears"]])
    quote["roi"] = calculate_roi(request.creditAmount, quote["totalPrice"])
    return quote
