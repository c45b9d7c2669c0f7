"""
QRE Engine
Derives per-category qualified research expense totals from an expense ledger.

The summary is recomputed from a ledger snapshot every time it is needed;
grand_total is always the sum of the four category totals.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict

from app.expense_ledger import (
    ExpenseCategory,
    ExpenseLedger,
    entry_qualified_amount,
    to_amount,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QRESummary:
    """Category totals for one ledger snapshot."""
    wages_total: float = 0.0
    contractors_total: float = 0.0
    supplies_total: float = 0.0
    cloud_software_total: float = 0.0

    @property
    def grand_total(self) -> float:
        return self.wages_total + self.contractors_total + self.supplies_total + self.cloud_software_total

    def category_total(self, category: ExpenseCategory) -> float:
        return {
            ExpenseCategory.WAGES: self.wages_total,
            ExpenseCategory.CONTRACTORS: self.contractors_total,
            ExpenseCategory.SUPPLIES: self.supplies_total,
            ExpenseCategory.CLOUD_SOFTWARE: self.cloud_software_total,
        }[ExpenseCategory(category)]

    def to_dict(self) -> dict:
        return {
            "wagesTotal": round(self.wages_total, 2),
            "contractorsTotal": round(self.contractors_total, 2),
            "suppliesTotal": round(self.supplies_total, 2),
            "cloudSoftwareTotal": round(self.cloud_software_total, 2),
            "grandTotal": round(self.grand_total, 2),
        }


def summarize_ledger(ledger: ExpenseLedger) -> QRESummary:
    """
    Compute the QRE summary for a ledger.

    Total over any input: missing or malformed numbers count as zero.
    Negative amounts are passed through unchanged; input validation
    belongs to the request layer, not here.
    """
    totals = {}
    for category in ExpenseCategory:
        totals[category] = sum(
            entry_qualified_amount(category, entry) for entry in ledger.entries(category)
        )

    return QRESummary(
        wages_total=totals[ExpenseCategory.WAGES],
        contractors_total=totals[ExpenseCategory.CONTRACTORS],
        supplies_total=totals[ExpenseCategory.SUPPLIES],
        cloud_software_total=totals[ExpenseCategory.CLOUD_SOFTWARE],
    )


def build_qre_breakdown(ledger: ExpenseLedger) -> Dict[str, Any]:
    """
    Per-category entries with their qualified amounts plus category totals,
    the shape shown on the QRE summary and review screens.
    """
    summary = summarize_ledger(ledger)
    breakdown: Dict[str, Any] = {}
    for category in ExpenseCategory:
        entries = []
        for entry in ledger.entries(category):
            row = entry.to_dict()
            row["qualifiedAmount"] = round(entry_qualified_amount(category, entry), 2)
            entries.append(row)
        breakdown[category.value] = {
            "entries": entries,
            "total": round(summary.category_total(category), 2),
        }
    breakdown["grandTotal"] = round(summary.grand_total, 2)
    return breakdown


def quick_estimate_ledger(
    wages: Any = 0,
    wage_rd_percent: Any = 0,
    contractors: Any = 0,
    supplies: Any = 0,
    supplies_rd_percent: Any = 100,
    cloud_monthly: Any = 0,
    cloud_rd_percent: Any = 100,
    customer_email: str = "",
) -> ExpenseLedger:
    """
    Build a ledger with at most one line per category from calculator inputs,
    so the public calculator and the dashboard share the same rules.
    """
    ledger = ExpenseLedger(customer_email)
    if to_amount(wages):
        entry = ledger.add_entry(ExpenseCategory.WAGES)
        ledger.update_entry(ExpenseCategory.WAGES, entry.id, {
            "employeeName": "All R&D staff",
            "annualSalary": wages,
            "rdPercentage": wage_rd_percent,
        })
    if to_amount(contractors):
        entry = ledger.add_entry(ExpenseCategory.CONTRACTORS)
        ledger.update_entry(ExpenseCategory.CONTRACTORS, entry.id, {
            "contractorName": "All contractors",
            "amount": contractors,
        })
    if to_amount(supplies):
        entry = ledger.add_entry(ExpenseCategory.SUPPLIES)
        ledger.update_entry(ExpenseCategory.SUPPLIES, entry.id, {
            "supplyType": "All supplies",
            "amount": supplies,
            "rdPercentage": supplies_rd_percent,
        })
    if to_amount(cloud_monthly):
        entry = ledger.add_entry(ExpenseCategory.CLOUD_SOFTWARE)
        ledger.update_entry(ExpenseCategory.CLOUD_SOFTWARE, entry.id, {
            "serviceName": "All cloud and software",
            "monthlyCost": cloud_monthly,
            "rdPercentage": cloud_rd_percent,
        })
    ledger.mark_clean()
    return ledger
