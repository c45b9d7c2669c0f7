"""
Ledger Store Tests

Snapshot load/save with optimistic versioning and final submission rows,
against a MagicMock record store client.
Run with: python -m pytest tests/test_ledger_store.py -v
"""

from unittest.mock import MagicMock

import pytest

from app.expense_ledger import ExpenseLedger
from app.ledger_store import (
    LEDGER_TABLE,
    LedgerConflictError,
    LedgerStore,
    RecordStoreUnavailable,
)

EMAIL = "founder@example.com"


def _supabase(rows=None, update_data=None):
    """Client whose select returns `rows` and whose conditional update returns `update_data`."""
    sb = MagicMock()
    table = sb.table.return_value
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(
        data=rows or []
    )
    table.update.return_value.eq.return_value.eq.return_value.execute.return_value = MagicMock(
        data=update_data if update_data is not None else [{"version": 1}]
    )
    return sb


class TestLoad:
    """Snapshot loading."""

    def test_missing_row_is_empty_ledger(self):
        store = LedgerStore(_supabase())
        ledger = store.load(EMAIL)
        assert ledger.is_empty()
        assert ledger.version == 0
        assert not ledger.dirty

    def test_existing_row(self):
        snapshot = {
            "wages": [{"id": "w1", "employeeName": "Ada", "annualSalary": 90_000, "rdPercentage": 40}],
            "cloudSoftware": [{"id": "c1", "serviceName": "AWS", "monthlyCost": 1_000, "rdPercentage": 50}],
        }
        sb = _supabase(rows=[{"snapshot": snapshot, "version": 7}])
        ledger = LedgerStore(sb).load(EMAIL)

        assert ledger.version == 7
        assert ledger.wages[0].rd_amount == 36_000
        assert ledger.cloud_software[0].annual_rd_amount == 6_000
        sb.table.assert_called_with(LEDGER_TABLE)

    def test_no_client(self):
        store = LedgerStore.__new__(LedgerStore)
        store.supabase = None
        with pytest.raises(RecordStoreUnavailable):
            store.load(EMAIL)


class TestSaveSnapshot:
    """Insert at version 1, then conditional updates."""

    def test_first_save_inserts_version_one(self):
        sb = _supabase()
        version = LedgerStore(sb).save_snapshot(EMAIL, {"wages": []}, expected_version=0)

        assert version == 1
        inserted = sb.table.return_value.insert.call_args[0][0]
        assert inserted["customer_email"] == EMAIL
        assert inserted["version"] == 1

    def test_first_save_with_nonzero_expected_version_conflicts(self):
        with pytest.raises(LedgerConflictError) as exc:
            LedgerStore(_supabase()).save_snapshot(EMAIL, {}, expected_version=3)
        assert exc.value.db_version == 0
        assert exc.value.incoming_version == 3

    def test_update_bumps_version(self):
        sb = _supabase(rows=[{"snapshot": {}, "version": 4}], update_data=[{"version": 5}])
        version = LedgerStore(sb).save_snapshot(EMAIL, {"supplies": []}, expected_version=4)

        assert version == 5
        table = sb.table.return_value
        update_payload = table.update.call_args[0][0]
        assert update_payload["version"] == 5
        table.update.return_value.eq.return_value.eq.assert_called_with("version", 4)

    def test_stale_version_conflicts(self):
        sb = _supabase(rows=[{"snapshot": {}, "version": 4}])
        with pytest.raises(LedgerConflictError) as exc:
            LedgerStore(sb).save_snapshot(EMAIL, {}, expected_version=2)
        assert exc.value.db_version == 4
        sb.table.return_value.update.assert_not_called()

    def test_lost_conditional_update_conflicts(self):
        """Another writer bumped the row between read and update."""
        sb = _supabase(rows=[{"snapshot": {}, "version": 4}], update_data=[])
        with pytest.raises(LedgerConflictError):
            LedgerStore(sb).save_snapshot(EMAIL, {}, expected_version=4)

    def test_unchecked_save_ignores_version(self):
        sb = _supabase(rows=[{"snapshot": {}, "version": 9}], update_data=[{"version": 10}])
        assert LedgerStore(sb).save_snapshot(EMAIL, {}) == 10


class TestSubmit:
    """Final wage and expense rows."""

    def test_rows_per_category(self):
        ledger = ExpenseLedger.from_dict(EMAIL, {
            "wages": [{"employeeName": "Ada", "role": "Engineer", "annualSalary": 100_000, "rdPercentage": 50}],
            "contractors": [{"contractorName": "Lab Co", "amount": 40_000, "description": "Testing"}],
            "supplies": [{"supplyType": "Chemicals", "amount": 2_000, "rdPercentage": 25}],
            "cloudSoftware": [{"serviceName": "GPU", "monthlyCost": 1_000, "rdPercentage": 80}],
        })
        sb = _supabase()
        counts = LedgerStore(sb).submit(ledger, "company-1")

        assert counts == {"wages": 1, "expenses": 3}
        inserts = sb.table.return_value.insert.call_args_list
        wage_rows = inserts[0][0][0]
        expense_rows = inserts[1][0][0]

        assert wage_rows[0]["qualified_amount"] == 50_000
        assert wage_rows[0]["company_id"] == "company-1"

        contractor, supply, cloud = expense_rows
        assert contractor["rd_percentage"] == 65
        assert contractor["qualified_amount"] == 26_000
        assert supply["qualified_amount"] == 500
        assert cloud["amount"] == 12_000
        assert cloud["qualified_amount"] == 9_600

    def test_empty_categories_are_not_inserted(self):
        ledger = ExpenseLedger.from_dict(EMAIL, {"supplies": [{"amount": 10}]})
        sb = _supabase()
        counts = LedgerStore(sb).submit(ledger, "company-1")

        assert counts == {"wages": 0, "expenses": 1}
        assert sb.table.return_value.insert.call_count == 1
