"""
Expense Ledger

Holds the four typed expense collections (wages, contractors, supplies,
cloud/software) for one customer and applies add/update/remove mutations.

Each entry keeps its derived qualified amount current after every mutation
using the category rule:
- Wages:          annual_salary * rd_percentage / 100
- Contractors:    amount * 0.65 (fixed, no percentage field)
- Supplies:       amount * rd_percentage / 100
- Cloud/Software: monthly_cost * 12 * rd_percentage / 100

Lookup misses on update/remove are silent no-ops.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)

# Contract Research - 65% rule
CONTRACT_QRE_RATE = 0.65

MONTHS_PER_YEAR = 12


class ExpenseCategory(str, Enum):
    """Expense categories, valued by their wire names."""
    WAGES = "wages"
    CONTRACTORS = "contractors"
    SUPPLIES = "supplies"
    CLOUD_SOFTWARE = "cloudSoftware"

    @classmethod
    def parse(cls, value: Any) -> Optional["ExpenseCategory"]:
        """Resolve a category from its wire name or a common alias."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().replace("-", "_").lower()
        return _CATEGORY_ALIASES.get(key)


_CATEGORY_ALIASES = {
    "wages": ExpenseCategory.WAGES,
    "wage": ExpenseCategory.WAGES,
    "contractors": ExpenseCategory.CONTRACTORS,
    "contractor": ExpenseCategory.CONTRACTORS,
    "supplies": ExpenseCategory.SUPPLIES,
    "supply": ExpenseCategory.SUPPLIES,
    "cloudsoftware": ExpenseCategory.CLOUD_SOFTWARE,
    "cloud_software": ExpenseCategory.CLOUD_SOFTWARE,
    "cloud": ExpenseCategory.CLOUD_SOFTWARE,
}


def to_amount(value: Any) -> float:
    """
    Coerce a form value to a float. Missing, blank or malformed values are 0.
    Accepts strings like "$1,250.50".
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        cleaned = value.replace(",", "").replace("$", "").strip()
        if not cleaned:
            return 0.0
        try:
            number = float(cleaned)
        except ValueError:
            return 0.0
    else:
        return 0.0
    # NaN / inf never reach the totals
    if number != number or number in (float("inf"), float("-inf")):
        return 0.0
    return number


def new_entry_id() -> str:
    return uuid4().hex[:16]


# ============================================================================
# Entry types
# ============================================================================

@dataclass
class WageEntry:
    """One employee's wages and R&D time share."""
    id: str = field(default_factory=new_entry_id)
    employee_name: str = ""
    role: str = ""
    annual_salary: float = 0.0
    rd_percentage: float = 0.0
    rd_amount: float = 0.0

    # wire key -> attribute
    FIELDS = {
        "employeeName": "employee_name",
        "role": "role",
        "annualSalary": "annual_salary",
        "rdPercentage": "rd_percentage",
    }
    NUMERIC = ("annual_salary", "rd_percentage")

    @property
    def qualified_amount(self) -> float:
        return self.rd_amount

    def recompute(self):
        self.rd_amount = wage_qualified_amount(self.annual_salary, self.rd_percentage)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employeeName": self.employee_name,
            "role": self.role,
            "annualSalary": self.annual_salary,
            "rdPercentage": self.rd_percentage,
            "rdAmount": round(self.rd_amount, 2),
        }


@dataclass
class ContractorEntry:
    """A contract research vendor. Qualified at the fixed 65% rate."""
    id: str = field(default_factory=new_entry_id)
    contractor_name: str = ""
    amount: float = 0.0
    description: str = ""
    qualified_amount: float = 0.0

    FIELDS = {
        "contractorName": "contractor_name",
        "amount": "amount",
        "description": "description",
    }
    NUMERIC = ("amount",)

    def recompute(self):
        self.qualified_amount = contractor_qualified_amount(self.amount)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "contractorName": self.contractor_name,
            "amount": self.amount,
            "description": self.description,
            "qualifiedAmount": round(self.qualified_amount, 2),
        }


@dataclass
class SupplyEntry:
    """Supplies consumed in research."""
    id: str = field(default_factory=new_entry_id)
    supply_type: str = ""
    amount: float = 0.0
    rd_percentage: float = 100.0
    rd_amount: float = 0.0

    FIELDS = {
        "supplyType": "supply_type",
        "amount": "amount",
        "rdPercentage": "rd_percentage",
    }
    NUMERIC = ("amount", "rd_percentage")

    @property
    def qualified_amount(self) -> float:
        return self.rd_amount

    def recompute(self):
        self.rd_amount = supply_qualified_amount(self.amount, self.rd_percentage)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplyType": self.supply_type,
            "amount": self.amount,
            "rdPercentage": self.rd_percentage,
            "rdAmount": round(self.rd_amount, 2),
        }


@dataclass
class CloudSoftwareEntry:
    """A monthly cloud or software subscription."""
    id: str = field(default_factory=new_entry_id)
    service_name: str = ""
    monthly_cost: float = 0.0
    rd_percentage: float = 100.0
    annual_rd_amount: float = 0.0

    FIELDS = {
        "serviceName": "service_name",
        "monthlyCost": "monthly_cost",
        "rdPercentage": "rd_percentage",
    }
    NUMERIC = ("monthly_cost", "rd_percentage")

    @property
    def qualified_amount(self) -> float:
        return self.annual_rd_amount

    def recompute(self):
        self.annual_rd_amount = cloud_annual_qualified_amount(self.monthly_cost, self.rd_percentage)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "serviceName": self.service_name,
            "monthlyCost": self.monthly_cost,
            "rdPercentage": self.rd_percentage,
            "annualRdAmount": round(self.annual_rd_amount, 2),
        }


ENTRY_TYPES = {
    ExpenseCategory.WAGES: WageEntry,
    ExpenseCategory.CONTRACTORS: ContractorEntry,
    ExpenseCategory.SUPPLIES: SupplyEntry,
    ExpenseCategory.CLOUD_SOFTWARE: CloudSoftwareEntry,
}


# ============================================================================
# Qualification rules
# ============================================================================

def wage_qualified_amount(annual_salary: Any, rd_percentage: Any) -> float:
    return to_amount(annual_salary) * to_amount(rd_percentage) / 100


def contractor_qualified_amount(amount: Any) -> float:
    return to_amount(amount) * CONTRACT_QRE_RATE


def supply_qualified_amount(amount: Any, rd_percentage: Any) -> float:
    return to_amount(amount) * to_amount(rd_percentage) / 100


def cloud_annual_qualified_amount(monthly_cost: Any, rd_percentage: Any) -> float:
    return to_amount(monthly_cost) * MONTHS_PER_YEAR * to_amount(rd_percentage) / 100


def entry_qualified_amount(category: ExpenseCategory, entry) -> float:
    """Apply the category rule to an entry's raw fields (ignores any stored derived value)."""
    if category == ExpenseCategory.WAGES:
        return wage_qualified_amount(entry.annual_salary, entry.rd_percentage)
    if category == ExpenseCategory.CONTRACTORS:
        return contractor_qualified_amount(entry.amount)
    if category == ExpenseCategory.SUPPLIES:
        return supply_qualified_amount(entry.amount, entry.rd_percentage)
    return cloud_annual_qualified_amount(entry.monthly_cost, entry.rd_percentage)


def _apply_patch(entry, patch: Dict[str, Any]) -> List[str]:
    """Apply known fields from a patch. Returns the attribute names changed."""
    attrs_by_key = dict(entry.FIELDS)
    # snake_case attribute names are accepted too
    attrs_by_key.update({attr: attr for attr in entry.FIELDS.values()})

    changed = []
    for key, value in (patch or {}).items():
        attr = attrs_by_key.get(key)
        if attr is None:
            continue
        if attr in entry.NUMERIC:
            value = to_amount(value)
        else:
            value = "" if value is None else str(value)
        setattr(entry, attr, value)
        changed.append(attr)
    return changed


def entry_from_dict(category: ExpenseCategory, data: Dict[str, Any]):
    """Build an entry from its wire dict. Derived keys are recomputed, not trusted."""
    entry_type = ENTRY_TYPES[category]
    entry = entry_type()
    raw_id = data.get("id") if isinstance(data, dict) else None
    if raw_id not in (None, ""):
        entry.id = str(raw_id)
    _apply_patch(entry, data if isinstance(data, dict) else {})
    entry.recompute()
    return entry


# ============================================================================
# Ledger
# ============================================================================

class ExpenseLedger:
    """
    In-memory expense ledger for one customer.
    The customer identity is explicit; nothing is read from ambient state.
    """

    def __init__(self, customer_email: str, version: int = 0):
        self.customer_email = customer_email
        self.version = version
        # bumped on every mutation; lets a save tell whether it raced an edit
        self.revision = 0
        self.dirty = False
        self._entries: Dict[ExpenseCategory, list] = {
            category: [] for category in ExpenseCategory
        }

    # --- collections -------------------------------------------------------

    @property
    def wages(self) -> List[WageEntry]:
        return self._entries[ExpenseCategory.WAGES]

    @property
    def contractors(self) -> List[ContractorEntry]:
        return self._entries[ExpenseCategory.CONTRACTORS]

    @property
    def supplies(self) -> List[SupplyEntry]:
        return self._entries[ExpenseCategory.SUPPLIES]

    @property
    def cloud_software(self) -> List[CloudSoftwareEntry]:
        return self._entries[ExpenseCategory.CLOUD_SOFTWARE]

    def entries(self, category: ExpenseCategory) -> list:
        return self._entries[ExpenseCategory(category)]

    def get_entry(self, category: ExpenseCategory, entry_id: str):
        for entry in self.entries(category):
            if entry.id == entry_id:
                return entry
        return None

    def is_empty(self) -> bool:
        return not any(self._entries.values())

    def entry_count(self) -> int:
        return sum(len(items) for items in self._entries.values())

    # --- mutations ---------------------------------------------------------

    def add_entry(self, category: ExpenseCategory):
        """Append a zero-valued entry with a fresh id. Always succeeds."""
        category = ExpenseCategory(category)
        items = self._entries[category]
        entry = ENTRY_TYPES[category]()
        existing_ids = {e.id for e in items}
        while entry.id in existing_ids:
            entry.id = new_entry_id()
        entry.recompute()
        items.append(entry)
        self._touch()
        return entry

    def update_entry(self, category: ExpenseCategory, entry_id: str, patch: Dict[str, Any]):
        """
        Patch an entry and recompute its derived amount.
        Returns the entry, or None when the id is not in the category.
        """
        entry = self.get_entry(category, entry_id)
        if entry is None:
            logger.debug(f"update_entry: no {ExpenseCategory(category).value} entry {entry_id}")
            return None
        _apply_patch(entry, patch)
        entry.recompute()
        self._touch()
        return entry

    def remove_entry(self, category: ExpenseCategory, entry_id: str) -> bool:
        """Remove an entry by id. Idempotent; returns True if something was removed."""
        category = ExpenseCategory(category)
        items = self._entries[category]
        remaining = [e for e in items if e.id != entry_id]
        if len(remaining) == len(items):
            return False
        self._entries[category] = remaining
        self._touch()
        return True

    def reset(self):
        """Drop every entry in every category."""
        for category in ExpenseCategory:
            self._entries[category] = []
        self._touch()

    def replace_from_dict(self, data: Dict[str, Any]):
        """Replace all collections with the contents of a wire snapshot."""
        loaded = ExpenseLedger.from_dict(self.customer_email, data, version=self.version)
        self._entries = loaded._entries
        self._touch()

    def mark_clean(self, version: Optional[int] = None):
        self.dirty = False
        if version is not None:
            self.version = version

    def _touch(self):
        self.revision += 1
        self.dirty = True

    # --- wire format -------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            category.value: [entry.to_dict() for entry in self._entries[category]]
            for category in ExpenseCategory
        }

    @classmethod
    def from_dict(cls, customer_email: str, data: Optional[Dict[str, Any]], version: int = 0) -> "ExpenseLedger":
        """
        Build a ledger from a persisted snapshot.
        Missing collections are empty; missing or duplicate ids are replaced.
        """
        ledger = cls(customer_email, version=version)
        data = data or {}
        for category in ExpenseCategory:
            raw_items = data.get(category.value)
            if raw_items is None and category == ExpenseCategory.CLOUD_SOFTWARE:
                raw_items = data.get("cloud_software")
            seen_ids = set()
            for raw in raw_items or []:
                if not isinstance(raw, dict):
                    continue
                entry = entry_from_dict(category, raw)
                if entry.id in seen_ids:
                    logger.warning(
                        f"Duplicate {category.value} id {entry.id} in snapshot for {customer_email}; reassigning"
                    )
                    while entry.id in seen_ids:
                        entry.id = new_entry_id()
                seen_ids.add(entry.id)
                ledger._entries[category].append(entry)
        return ledger
