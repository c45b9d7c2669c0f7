"""
Credit Estimate Engine
Resolves a QRE total into a federal credit estimate and a service price,
and expands it with state credits and payroll tax offset eligibility for
the credits screen.

All resolver functions are total: negative or missing inputs are clamped
to zero and nothing raises.
"""

import logging
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Union

from app.expense_ledger import CONTRACT_QRE_RATE, to_amount
from app.pricing_engine import (
    PricingTier,
    clamp_non_negative,
    clamp_additional_years,
    get_tier,
    resolve_price,
)
from app.qre_engine import QRESummary
from app.settings_loader import get_federal_credit_rate

logger = logging.getLogger(__name__)

# ============================================================================
# Credit Computation Constants
# ============================================================================

# Regular Credit (20% of QRE over base amount)
REGULAR_CREDIT_RATE = 0.20

# Default effective rate when base amount unknown (preliminary estimate)
DEFAULT_EFFECTIVE_RATE = 0.065

# Federal rate by business classification
FEDERAL_RATES = {
    "startup": {
        "rate": 0.14,
        "name": "Startup Method",
        "description": "14% credit for qualifying startups",
        "can_offset_payroll": True,
    },
    "qualified_small_business": {
        "rate": 0.10,
        "name": "Small Business Enhanced Rate",
        "description": "10% effective rate for QSBs",
        "can_offset_payroll": True,
    },
    "standard": {
        "rate": DEFAULT_EFFECTIVE_RATE,
        "name": "Alternative Simplified Credit",
        "description": "Standard 6.5% ASC rate",
        "can_offset_payroll": False,
    },
}

STARTUP_YEARS_LIMIT = 5
QSB_REVENUE_LIMIT = 5_000_000

# Revenue bands as collected by the company form
REVENUE_BANDS = {
    "Under $1M": 500_000,
    "$1M-$5M": 3_000_000,
    "$1M - $5M": 3_000_000,
    "$5M-$25M": 15_000_000,
    "Over $25M": 50_000_000,
}

# State R&D credit rates (percent of QRE)
STATE_CREDIT_RATES = {
    "California": {"rate": 24, "description": "California offers a 24% credit for qualified R&D expenses, with no annual cap"},
    "Connecticut": {"rate": 6, "description": "6% credit with additional benefits for small businesses"},
    "Illinois": {"rate": 6.5, "description": "6.5% credit for increasing research activities in Illinois"},
    "Maryland": {"rate": 10, "description": "10% credit for qualified research expenses with 15-year carryforward"},
    "Massachusetts": {"rate": 10, "description": "10% research credit for qualified expenses above base amount"},
    "New Jersey": {"rate": 20, "description": "20% credit for qualified research expenses with generous carryforward"},
    "New York": {"rate": 9, "description": "9% credit for qualified research expenses in New York"},
    "North Carolina": {"rate": 25, "description": "25% credit for qualified research expenses"},
    "Pennsylvania": {"rate": 10, "description": "10% credit for qualified research and development tax credit"},
    "Texas": {"rate": 5, "description": "5% credit for qualified research expenses with no annual limit"},
    "Washington": {"rate": 1.5, "description": "1.5% credit for qualified research activities in Washington"},
}

PAYROLL_OFFSET_LIMIT = 250_000

# Documentation requirements by credit size
DOCUMENTATION_LEVELS = [
    ("minimal", 50_000, ["Form 6765", "Basic narrative", "Expense summary"]),
    ("standard", 250_000, ["Form 6765", "Technical narrative", "Time tracking", "Project documentation"]),
    ("comprehensive", float("inf"), ["Form 6765", "Detailed narrative", "Time studies", "Project documentation", "Nexus study"]),
]


# ============================================================================
# Data Classes for Estimates
# ============================================================================

@dataclass
class CreditEstimate:
    """Federal credit estimate and service price for one QRE total."""
    total_qre: float
    rate: float
    federal_credit: float
    tier: PricingTier
    base_price: float
    additional_years: int = 0
    additional_years_price: float = 0.0

    @property
    def price(self) -> float:
        return self.base_price + self.additional_years_price

    @property
    def savings_amount(self) -> float:
        return max(0.0, self.federal_credit - self.price)

    def to_dict(self) -> dict:
        return {
            "totalQRE": round(self.total_qre, 2),
            "rate": self.rate,
            "federalCredit": round(self.federal_credit, 2),
            "priceTier": self.tier.to_dict(),
            "basePrice": self.base_price,
            "additionalYears": self.additional_years,
            "additionalYearsPrice": self.additional_years_price,
            "price": self.price,
            "savingsAmount": round(self.savings_amount, 2),
        }


# ============================================================================
# Resolver
# ============================================================================

def federal_credit(total_qre: Any, rate: Optional[float] = None) -> float:
    """federal credit = total QRE x rate (canonical configured rate by default)."""
    qre = clamp_non_negative(total_qre)
    applied_rate = clamp_non_negative(get_federal_credit_rate() if rate is None else rate)
    return qre * applied_rate


def estimate_credit(
    qre: Union[QRESummary, float, int, None],
    rate: Optional[float] = None,
    additional_years: Any = 0,
) -> CreditEstimate:
    """
    Resolve a QRE summary (or raw QRE total) into a credit estimate.
    The price tier is selected by the federal credit amount.
    """
    total_qre = qre.grand_total if isinstance(qre, QRESummary) else qre
    total_qre = clamp_non_negative(total_qre)
    applied_rate = clamp_non_negative(get_federal_credit_rate() if rate is None else rate)
    credit = total_qre * applied_rate

    tier = get_tier(credit)
    years = clamp_additional_years(additional_years)
    total_price = resolve_price(credit, years)

    return CreditEstimate(
        total_qre=total_qre,
        rate=applied_rate,
        federal_credit=credit,
        tier=tier,
        base_price=tier.base_price,
        additional_years=years,
        additional_years_price=total_price - tier.base_price,
    )


def revenue_to_number(annual_revenue: Any) -> float:
    if isinstance(annual_revenue, str) and annual_revenue in REVENUE_BANDS:
        return REVENUE_BANDS[annual_revenue]
    return clamp_non_negative(annual_revenue)


def federal_rate_for_profile(profile: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Pick the federal rate for a business profile:
    startup (under 5 years, no revenue 3 years ago) -> 14%,
    qualified small business (< $5M revenue, under 5 years) -> 10%,
    otherwise the standard 6.5%.
    """
    profile = profile or {}
    years = to_amount(profile.get("years_in_business"))
    revenue = revenue_to_number(profile.get("annual_revenue"))
    had_revenue = bool(profile.get("had_revenue_three_years_ago"))

    if profile.get("years_in_business") is not None and years < STARTUP_YEARS_LIMIT and not had_revenue:
        key = "startup"
    elif profile.get("years_in_business") is not None and revenue < QSB_REVENUE_LIMIT and years < STARTUP_YEARS_LIMIT:
        key = "qualified_small_business"
    else:
        key = "standard"
    return {"classification": key, **FEDERAL_RATES[key]}


def estimate_state_credits(total_qre: Any, states: List[str]) -> List[Dict[str, Any]]:
    """State credit per R&D state; unknown states carry a zero credit."""
    qre = clamp_non_negative(total_qre)
    results = []
    for state in dict.fromkeys(s for s in states or [] if s):
        info = STATE_CREDIT_RATES.get(state)
        if not info:
            results.append({
                "state": state,
                "rate": 0,
                "creditAmount": 0,
                "description": "No specific R&D credit available in this state",
            })
            continue
        results.append({
            "state": state,
            "rate": info["rate"],
            "creditAmount": round(qre * info["rate"] / 100),
            "description": info["description"],
        })
    return results


def payroll_tax_offset(federal_credit_amount: Any, annual_revenue: Any) -> Dict[str, Any]:
    """Small businesses may apply the federal credit against payroll taxes, capped."""
    revenue = revenue_to_number(annual_revenue)
    eligible = 0 < revenue < QSB_REVENUE_LIMIT
    offset = {
        "eligible": eligible,
        "maxOffset": PAYROLL_OFFSET_LIMIT,
        "effectiveOffset": 0,
        "explanation": "",
    }
    if eligible:
        offset["effectiveOffset"] = min(round(clamp_non_negative(federal_credit_amount)), PAYROLL_OFFSET_LIMIT)
        offset["explanation"] = (
            "Your business qualifies for payroll tax offset based on revenue size. Up to $250,000 of "
            "federal R&D credits can offset payroll taxes instead of income taxes."
        )
    else:
        offset["explanation"] = (
            "Payroll tax offset is available for qualifying small businesses (under $5M gross receipts) "
            "that are less than 5 years old."
        )
    return offset


def get_documentation_level(credit_amount: Any) -> Dict[str, Any]:
    credit = clamp_non_negative(credit_amount)
    for level, threshold, required in DOCUMENTATION_LEVELS:
        if credit < threshold:
            return {"level": level, "required": required}
    level, _, required = DOCUMENTATION_LEVELS[-1]
    return {"level": level, "required": required}


# ============================================================================
# Credit Estimate Engine Class
# ============================================================================

class CreditEstimateEngine:
    """
    Computes the credits screen for one customer: federal credit at the
    canonical rate, state credits for the company's R&D states, and payroll
    tax offset eligibility.
    """

    def __init__(self, supabase, customer: Dict[str, Any]):
        self.supabase = supabase
        self.customer = customer or {}
        self.company: Dict[str, Any] = {}

    def load_data(self):
        """Load the company record for the customer. Missing data is not an error."""
        if not self.supabase or not self.customer.get("id"):
            return
        try:
            result = self.supabase.table("companies")\
                .select("*")\
                .eq("customer_id", self.customer["id"])\
                .limit(1)\
                .execute()
            if result.data:
                self.company = result.data[0]
        except Exception as e:
            logger.warning(f"Failed to load company for customer {self.customer.get('id')}: {e}")
            self.company = {}

    def company_info(self) -> Dict[str, Any]:
        rd_states = self.company.get("rd_states") or []
        if isinstance(rd_states, str):
            rd_states = [s.strip() for s in rd_states.split(",") if s.strip()]
        return {
            "primaryState": self.company.get("primary_state") or "",
            "rdStates": rd_states,
            "employeeCount": self.company.get("employee_count") or "",
            "annualRevenue": self.company.get("revenue") or "",
        }

    def compute_credits(self, total_qre: Any, rate: Optional[float] = None) -> Dict[str, Any]:
        """Full credit picture for a QRE total."""
        if not self.company:
            self.load_data()
        info = self.company_info()

        estimate = estimate_credit(total_qre, rate=rate)
        states = estimate_state_credits(estimate.total_qre, [info["primaryState"], *info["rdStates"]])
        offset = payroll_tax_offset(estimate.federal_credit, info["annualRevenue"])

        federal_amount = round(estimate.federal_credit)
        total_state = sum(s["creditAmount"] for s in states)
        total_credits = federal_amount + total_state

        return {
            "totalQRE": round(estimate.total_qre, 2),
            "federalCredit": {
                "amount": federal_amount,
                "rate": round(estimate.rate * 100, 2),
                "explanation": (
                    f"Applies {estimate.rate * 100:.1f}% to qualified research expenses "
                    f"(contract research counted at {CONTRACT_QRE_RATE * 100:.0f}%)."
                ),
            },
            "stateCredits": states,
            "payrollTaxOffset": offset,
            "totalCredits": total_credits,
            "netBenefit": total_credits,
            "documentation": get_documentation_level(federal_amount),
            "companyInfo": info,
        }
