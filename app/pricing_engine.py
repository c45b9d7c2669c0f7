"""
Pricing Engine
Maps a credit amount to a service price tier and prices multi-year filings.

Tier boundaries are lower-bound inclusive:
    [0, 10,000)        -> $500   Starter
    [10,000, 50,000)   -> $750   Growth
    [50,000, 100,000)  -> $1,000 Scale
    [100,000, inf)     -> $1,500 Enterprise

Each additional filing year adds a flat surcharge.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from app.expense_ledger import to_amount
from app.settings_loader import get_setting

logger = logging.getLogger(__name__)


class PricingError(ValueError):
    """Raised when a multi-year quote request cannot be priced."""


@dataclass(frozen=True)
class PricingTier:
    """One price bracket."""
    min: float
    max: float
    base_price: float
    name: str
    description: str

    def contains(self, credit_amount: float) -> bool:
        return self.min <= credit_amount < self.max

    def to_dict(self) -> dict:
        return {
            "min": self.min,
            "max": None if self.max == float("inf") else self.max,
            "basePrice": self.base_price,
            "name": self.name,
            "description": self.description,
        }


PRICING_TIERS: List[PricingTier] = [
    PricingTier(0, 10_000, 500, "Starter", "For credits under $10,000"),
    PricingTier(10_000, 50_000, 750, "Growth", "For credits $10K-$50K"),
    PricingTier(50_000, 100_000, 1_000, "Scale", "For credits $50K-$100K"),
    PricingTier(100_000, float("inf"), 1_500, "Enterprise", "For credits over $100K"),
]

ADDITIONAL_YEAR_PRICE = 297
MAX_ADDITIONAL_YEARS = 3

ELIGIBLE_YEARS = [2025, 2024, 2023, 2022]

# Amendment / filing deadlines per tax year
DEADLINES = {
    2022: date(2026, 7, 15),
    2023: date(2027, 7, 15),
    2024: date(2028, 7, 15),
    2025: date(2029, 4, 15),
}


def clamp_non_negative(value: Any) -> float:
    """Resolver boundary: negative, missing or malformed input becomes 0."""
    return max(0.0, to_amount(value))


def get_tier(credit_amount: Any) -> PricingTier:
    """Step function from credit amount to tier."""
    amount = clamp_non_negative(credit_amount)
    for tier in PRICING_TIERS:
        if tier.contains(amount):
            return tier
    return PRICING_TIERS[-1]


def get_tier_number(credit_amount: Any) -> int:
    """1-based tier index, as shown in the calculator."""
    return PRICING_TIERS.index(get_tier(credit_amount)) + 1


def _additional_year_price() -> float:
    price = get_setting("additional_year_price")
    return float(ADDITIONAL_YEAR_PRICE if price is None else price)


def _max_additional_years() -> int:
    years = get_setting("max_additional_years")
    return int(MAX_ADDITIONAL_YEARS if years is None else years)


def clamp_additional_years(additional_years: Any) -> int:
    years = int(clamp_non_negative(additional_years))
    return min(years, _max_additional_years())


def resolve_price(credit_amount: Any, additional_years: Any = 0) -> float:
    """
    Total service price: tier base price plus the per-year surcharge for
    each additional filing year (clamped to [0, MAX_ADDITIONAL_YEARS]).
    """
    tier = get_tier(credit_amount)
    years = clamp_additional_years(additional_years)
    return tier.base_price + years * _additional_year_price()


# ============================================================================
# Multi-year quotes
# ============================================================================

def months_until(deadline: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    return (deadline - today).days // 30


def get_urgency_message(year: int, today: Optional[date] = None) -> Optional[str]:
    deadline = DEADLINES.get(year)
    if not deadline:
        return None

    months = months_until(deadline, today)
    if months < 6:
        return f"Deadline in {months} months!"
    if months < 12:
        return f"Deadline: {deadline.strftime('%b %Y')}"
    return None


def quote_for_years(
    credit_amount: Any,
    selected_years: List[int],
    state_credits: Any = 0,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Price a filing for the selected tax years.
    The newest eligible year carries the tier price; every other year is an
    additional year.

    Raises:
        PricingError: no eligible year selected, or too many additional years
    """
    valid_years = sorted({int(y) for y in selected_years or [] if int(y) in ELIGIBLE_YEARS}, reverse=True)
    if not valid_years:
        raise PricingError("No valid years selected")

    base_year, additional = valid_years[0], valid_years[1:]
    max_additional = _max_additional_years()
    if len(additional) > max_additional:
        raise PricingError(f"Maximum {max_additional} additional years allowed")

    credit = clamp_non_negative(credit_amount)
    tier = get_tier(credit)
    per_year = _additional_year_price()

    years = [{
        "year": base_year,
        "isBase": True,
        "price": tier.base_price,
        "deadline": DEADLINES[base_year].isoformat(),
        "urgency": get_urgency_message(base_year, today),
    }]
    for year in additional:
        years.append({
            "year": year,
            "isBase": False,
            "price": per_year,
            "deadline": DEADLINES[year].isoformat(),
            "urgency": get_urgency_message(year, today),
        })

    additional_price = len(additional) * per_year
    total_price = tier.base_price + additional_price
    total_credits = credit + clamp_non_negative(state_credits)

    breakdown = [{"description": f"{base_year} Tax Year ({tier.name} Package)", "amount": tier.base_price}]
    breakdown.extend(
        {"description": f"{year} Tax Year (Additional)", "amount": per_year} for year in additional
    )

    return {
        "selectedYears": years,
        "basePrice": tier.base_price,
        "additionalYearsPrice": additional_price,
        "totalPrice": total_price,
        "savingsAmount": max(0.0, total_credits - total_price),
        "tier": tier.to_dict(),
        "breakdown": breakdown,
    }


def get_multi_year_savings(years: List[int]) -> Optional[Dict[str, Any]]:
    """Bundle savings versus buying each year separately at the Growth-to-Scale tier."""
    if not years or len(years) <= 1:
        return None

    tier = get_tier(50_000)
    regular_price = len(years) * tier.base_price
    bundle_price = tier.base_price + (len(years) - 1) * _additional_year_price()
    savings = regular_price - bundle_price

    return {
        "regularPrice": regular_price,
        "bundlePrice": bundle_price,
        "savings": savings,
        "savingsPercent": round(savings / regular_price * 100),
    }


def get_eligible_years(today: Optional[date] = None) -> List[Dict[str, Any]]:
    result = []
    for year in ELIGIBLE_YEARS:
        deadline = DEADLINES[year]
        months = months_until(deadline, today)
        result.append({
            "year": year,
            "deadline": deadline.isoformat(),
            "isExpiringSoon": months < 12,
            "monthsRemaining": months,
        })
    return result


def calculate_roi(credit_amount: Any, price: Any) -> Dict[str, float]:
    """Return on the service fee. A zero price yields a zero ratio."""
    credit = clamp_non_negative(credit_amount)
    fee = clamp_non_negative(price)
    if fee == 0:
        return {"ratio": 0.0, "percentage": 0, "netBenefit": credit}
    return {
        "ratio": round(credit / fee, 1),
        "percentage": round((credit - fee) / fee * 100),
        "netBenefit": credit - fee,
    }


def format_price(amount: Any) -> str:
    return f"${clamp_non_negative(amount):,.0f}"
