"""
Ledger Store

Loads and saves expense ledger snapshots in the external record store and
writes the final submission rows.

Snapshots live in `expense_ledgers` (one row per customer email) with a
`version` column used for optimistic concurrency: a save carrying the
version it was loaded at is rejected if another tab saved in between.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.expense_ledger import (
    ExpenseCategory,
    ExpenseLedger,
    CONTRACT_QRE_RATE,
    entry_qualified_amount,
)
from app.supabase_client import get_supabase

logger = logging.getLogger(__name__)

LEDGER_TABLE = "expense_ledgers"


class RecordStoreUnavailable(RuntimeError):
    """Raised when the record store is not configured."""


class LedgerConflictError(Exception):
    """A snapshot was saved against a stale version."""

    def __init__(self, customer_email: str, db_version: int, incoming_version: int):
        self.customer_email = customer_email
        self.db_version = db_version
        self.incoming_version = incoming_version
        super().__init__(
            f"Ledger for {customer_email} is at version {db_version}, save was based on {incoming_version}"
        )


class LedgerStore:
    """Reads and writes ledger snapshots keyed by customer email."""

    def __init__(self, supabase=None):
        self.supabase = supabase or get_supabase()

    def _require_client(self):
        if not self.supabase:
            raise RecordStoreUnavailable("Record store not configured")
        return self.supabase

    def _fetch_row(self, customer_email: str) -> Optional[Dict[str, Any]]:
        client = self._require_client()
        result = client.table(LEDGER_TABLE)\
            .select("snapshot, version")\
            .eq("customer_email", customer_email)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def load(self, customer_email: str) -> ExpenseLedger:
        """
        Load the customer's ledger. A customer with no snapshot gets an
        empty ledger at version 0.
        """
        row = self._fetch_row(customer_email)
        if not row:
            logger.info(f"No ledger snapshot for {customer_email}; starting empty")
            return ExpenseLedger(customer_email)

        version = int(row.get("version") or 0)
        ledger = ExpenseLedger.from_dict(customer_email, row.get("snapshot") or {}, version=version)
        logger.info(
            f"Loaded ledger for {customer_email} at version {version} ({ledger.entry_count()} entries)"
        )
        return ledger

    def save_snapshot(
        self,
        customer_email: str,
        snapshot: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> int:
        """
        Persist a full snapshot and return the new version.

        Raises:
            LedgerConflictError: expected_version is given and the stored version differs
            RecordStoreUnavailable: no record store client
        """
        client = self._require_client()
        now = datetime.utcnow().isoformat()
        row = self._fetch_row(customer_email)

        if not row:
            if expected_version not in (None, 0):
                raise LedgerConflictError(customer_email, 0, expected_version)
            client.table(LEDGER_TABLE).insert({
                "customer_email": customer_email,
                "snapshot": snapshot,
                "version": 1,
                "updated_at": now,
            }).execute()
            return 1

        current = int(row.get("version") or 0)
        if expected_version is not None and expected_version != current:
            raise LedgerConflictError(customer_email, current, expected_version)

        # Conditional update: only succeeds if nobody bumped the version meanwhile
        result = client.table(LEDGER_TABLE)\
            .update({"snapshot": snapshot, "version": current + 1, "updated_at": now})\
            .eq("customer_email", customer_email)\
            .eq("version", current)\
            .execute()
        if not result.data:
            latest = self._fetch_row(customer_email) or {}
            raise LedgerConflictError(customer_email, int(latest.get("version") or current), current)
        return current + 1

    def submit(self, ledger: ExpenseLedger, company_id: str) -> Dict[str, int]:
        """
        Write the final wage and expense rows for a company.
        Qualified amounts are recomputed from the category rules.
        """
        client = self._require_client()

        wage_rows = [
            {
                "company_id": company_id,
                "employee_name": w.employee_name,
                "role": w.role,
                "salary": w.annual_salary,
                "rd_percentage": w.rd_percentage,
                "qualified_amount": round(entry_qualified_amount(ExpenseCategory.WAGES, w), 2),
            }
            for w in ledger.wages
        ]

        expense_rows: List[Dict[str, Any]] = []
        for c in ledger.contractors:
            expense_rows.append({
                "company_id": company_id,
                "expense_type": "contractor",
                "contractor_name": c.contractor_name,
                "description": c.description,
                "amount": c.amount,
                "rd_percentage": CONTRACT_QRE_RATE * 100,
                "qualified_amount": round(entry_qualified_amount(ExpenseCategory.CONTRACTORS, c), 2),
            })
        for s in ledger.supplies:
            expense_rows.append({
                "company_id": company_id,
                "expense_type": "supply",
                "supply_type": s.supply_type,
                "amount": s.amount,
                "rd_percentage": s.rd_percentage,
                "qualified_amount": round(entry_qualified_amount(ExpenseCategory.SUPPLIES, s), 2),
            })
        for cloud in ledger.cloud_software:
            expense_rows.append({
                "company_id": company_id,
                "expense_type": "cloud",
                "service_name": cloud.service_name,
                "monthly_cost": cloud.monthly_cost,
                # Stored annualized
                "amount": cloud.monthly_cost * 12,
                "rd_percentage": cloud.rd_percentage,
                "qualified_amount": round(entry_qualified_amount(ExpenseCategory.CLOUD_SOFTWARE, cloud), 2),
            })

        if wage_rows:
            client.table("wages").insert(wage_rows).execute()
        if expense_rows:
            client.table("expenses").insert(expense_rows).execute()

        logger.info(
            f"Submitted ledger for {ledger.customer_email}: {len(wage_rows)} wage rows, {len(expense_rows)} expense rows"
        )
        return {"wages": len(wage_rows), "expenses": len(expense_rows)}
