"""
Autosave & Ledger Service Tests

Debounced single-slot saving and the session ledger service.
Async code is driven with asyncio.run inside plain tests.
Run with: python -m pytest tests/test_autosave.py -v
"""

import asyncio
import logging
import time

import pytest

from app.autosave import LedgerAutosaver
from app.expense_ledger import ExpenseCategory, ExpenseLedger
from app.ledger_service import LedgerService
from app.ledger_store import LedgerConflictError


class FakeLedgerStore:
    """In-memory stand-in for LedgerStore with the same versioning rules."""

    def __init__(self):
        self.rows = {}
        self.saves = []

    def load(self, customer_email):
        row = self.rows.get(customer_email)
        if not row:
            return ExpenseLedger(customer_email)
        return ExpenseLedger.from_dict(customer_email, row["snapshot"], version=row["version"])

    def save_snapshot(self, customer_email, snapshot, expected_version=None):
        current = self.rows.get(customer_email, {}).get("version", 0)
        if expected_version is not None and expected_version != current:
            raise LedgerConflictError(customer_email, current, expected_version)
        self.rows[customer_email] = {"snapshot": snapshot, "version": current + 1}
        self.saves.append(snapshot)
        return current + 1


# =============================================================================
# AUTOSAVER
# =============================================================================

class TestLedgerAutosaver:
    """Single-slot debounced save queue."""

    def test_burst_of_schedules_saves_once(self):
        calls = []

        async def save():
            calls.append(1)

        async def scenario():
            saver = LedgerAutosaver(save, quiet_seconds=0.05)
            for _ in range(5):
                saver.schedule()
                await asyncio.sleep(0.01)
            assert saver.pending
            await asyncio.sleep(0.15)
            return saver

        saver = asyncio.run(scenario())
        assert calls == [1]
        assert saver.save_count == 1
        assert not saver.pending

    def test_flush_saves_immediately(self):
        calls = []

        async def save():
            calls.append(1)

        async def scenario():
            saver = LedgerAutosaver(save, quiet_seconds=60)
            saver.schedule()
            ok = await saver.flush()
            await asyncio.sleep(0)
            return ok, saver

        ok, saver = asyncio.run(scenario())
        assert ok is True
        assert calls == [1]
        assert not saver.pending

    def test_cancel_drops_pending_save(self):
        calls = []

        async def scenario():
            saver = LedgerAutosaver(lambda: calls.append(1), quiet_seconds=0.05)
            saver.schedule()
            dropped = saver.cancel()
            await asyncio.sleep(0.1)
            return dropped, saver

        dropped, saver = asyncio.run(scenario())
        assert dropped is True
        assert calls == []
        assert saver.cancel() is False

    def test_sync_save_func_runs_in_executor(self):
        calls = []

        async def scenario():
            saver = LedgerAutosaver(lambda: calls.append("sync"), quiet_seconds=0)
            return await saver.flush()

        assert asyncio.run(scenario()) is True
        assert calls == ["sync"]

    def test_failure_is_logged_not_raised(self, caplog):
        def save():
            raise RuntimeError("store down")

        async def scenario():
            saver = LedgerAutosaver(save, quiet_seconds=0, name="a@b.co")
            ok = await saver.flush()
            return ok, saver

        with caplog.at_level(logging.ERROR, logger="app.autosave"):
            ok, saver = asyncio.run(scenario())

        assert ok is False
        assert saver.failure_count == 1
        assert "store down" in saver.last_error
        assert "[Autosave]" in caplog.text

    def test_conflict_is_logged_as_warning(self, caplog):
        async def save():
            raise LedgerConflictError("a@b.co", 4, 3)

        async def scenario():
            return await LedgerAutosaver(save, quiet_seconds=0).flush()

        with caplog.at_level(logging.WARNING, logger="app.autosave"):
            assert asyncio.run(scenario()) is False
        assert "stale snapshot" in caplog.text


# =============================================================================
# LEDGER SERVICE
# =============================================================================

class TestLedgerService:
    """Session ledgers, mutations and persistence."""

    EMAIL = "founder@example.com"

    def test_first_access_loads_from_store(self):
        store = FakeLedgerStore()
        store.rows[self.EMAIL] = {"snapshot": {"contractors": [{"id": "c1", "amount": 100}]}, "version": 2}
        service = LedgerService(store=store, quiet_seconds=60)

        async def scenario():
            first = await service.get_ledger(self.EMAIL)
            second = await service.get_ledger(self.EMAIL)
            return first, second

        first, second = asyncio.run(scenario())
        assert first is second
        assert first.version == 2
        assert first.contractors[0].id == "c1"

    def test_mutation_schedules_one_save(self):
        store = FakeLedgerStore()
        service = LedgerService(store=store, quiet_seconds=0.05)

        async def scenario():
            entry = await service.add_entry(self.EMAIL, ExpenseCategory.WAGES)
            await service.update_entry(self.EMAIL, ExpenseCategory.WAGES, entry.id, {"annualSalary": 100_000})
            await service.update_entry(self.EMAIL, ExpenseCategory.WAGES, entry.id, {"rdPercentage": 50})
            await asyncio.sleep(0.2)
            return await service.get_ledger(self.EMAIL)

        ledger = asyncio.run(scenario())
        assert len(store.saves) == 1
        assert store.saves[0]["wages"][0]["rdAmount"] == 50_000
        assert ledger.version == 1
        assert not ledger.dirty

    def test_update_miss_does_not_schedule(self):
        store = FakeLedgerStore()
        service = LedgerService(store=store, quiet_seconds=0.01)

        async def scenario():
            result = await service.update_entry(self.EMAIL, ExpenseCategory.SUPPLIES, "nope", {"amount": 5})
            removed = await service.remove_entry(self.EMAIL, ExpenseCategory.SUPPLIES, "nope")
            await asyncio.sleep(0.05)
            return result, removed

        assert asyncio.run(scenario()) == (None, False)
        assert store.saves == []

    def test_edit_during_write_keeps_ledger_dirty(self):
        """A mutation landing while a save is in flight must not be marked saved."""
        store = FakeLedgerStore()
        service = LedgerService(store=store, quiet_seconds=60)
        original_save = store.save_snapshot

        async def scenario():
            ledger = await service.get_ledger(self.EMAIL)
            ledger.add_entry(ExpenseCategory.SUPPLIES)

            def racing_save(email, snapshot, expected_version=None):
                ledger.add_entry(ExpenseCategory.SUPPLIES)
                return original_save(email, snapshot, expected_version)

            store.save_snapshot = racing_save
            await service.persist(self.EMAIL)
            return ledger

        ledger = asyncio.run(scenario())
        assert ledger.dirty
        assert ledger.version == 1
        assert len(store.saves[0]["supplies"]) == 1
        assert len(ledger.supplies) == 2

    def test_replace_with_stale_version_conflicts_and_reloads(self):
        store = FakeLedgerStore()
        store.rows[self.EMAIL] = {"snapshot": {"supplies": [{"id": "s1", "amount": 10}]}, "version": 5}
        service = LedgerService(store=store, quiet_seconds=60)

        async def scenario():
            await service.get_ledger(self.EMAIL)
            with pytest.raises(LedgerConflictError):
                await service.replace(self.EMAIL, {"supplies": []}, version=4)
            return await service.get_ledger(self.EMAIL)

        ledger = asyncio.run(scenario())
        assert ledger.version == 5
        assert [e.id for e in ledger.supplies] == ["s1"]

    def test_replace_saves_immediately(self):
        store = FakeLedgerStore()
        service = LedgerService(store=store, quiet_seconds=60)

        async def scenario():
            return await service.replace(self.EMAIL, {"contractors": [{"amount": 1_000}]}, version=0)

        ledger = asyncio.run(scenario())
        assert ledger.version == 1
        assert not ledger.dirty
        assert store.rows[self.EMAIL]["snapshot"]["contractors"][0]["qualifiedAmount"] == 650

    def test_flush_all(self):
        store = FakeLedgerStore()
        service = LedgerService(store=store, quiet_seconds=60)

        async def scenario():
            await service.add_entry("one@example.com", ExpenseCategory.WAGES)
            await service.add_entry("two@example.com", ExpenseCategory.CONTRACTORS)
            return await service.flush_all()

        assert asyncio.run(scenario()) == 2
        assert set(store.rows) == {"one@example.com", "two@example.com"}


class SlowLedgerStore(FakeLedgerStore):
    """Compare-and-set store whose writes take a while to land."""

    def __init__(self, write_seconds=0.2):
        super().__init__()
        self.write_seconds = write_seconds
        self.conflicts = 0

    def save_snapshot(self, customer_email, snapshot, expected_version=None):
        time.sleep(self.write_seconds)
        try:
            return super().save_snapshot(customer_email, snapshot, expected_version)
        except LedgerConflictError:
            self.conflicts += 1
            raise


class TestSerializedWrites:
    """Saves for one customer never overlap each other."""

    EMAIL = "founder@example.com"

    def test_flush_waits_for_in_flight_autosave(self):
        store = SlowLedgerStore()
        service = LedgerService(store=store, quiet_seconds=0.01)

        async def scenario():
            entry = await service.add_entry(self.EMAIL, ExpenseCategory.SUPPLIES)
            # Quiet window has passed; the first autosave is now writing
            await asyncio.sleep(0.05)
            await service.update_entry(self.EMAIL, ExpenseCategory.SUPPLIES, entry.id, {"amount": 500})
            ok = await service.flush(self.EMAIL)
            return ok, await service.get_ledger(self.EMAIL)

        ok, ledger = asyncio.run(scenario())
        assert ok is True
        assert store.conflicts == 0
        assert store.rows[self.EMAIL]["version"] == 2
        assert store.rows[self.EMAIL]["snapshot"]["supplies"][0]["amount"] == 500
        assert ledger.version == 2
        assert not ledger.dirty
        assert not service.has_save_conflict(self.EMAIL)

    def test_replace_waits_for_in_flight_autosave(self):
        store = SlowLedgerStore()
        service = LedgerService(store=store, quiet_seconds=0.01)

        async def scenario():
            await service.add_entry(self.EMAIL, ExpenseCategory.WAGES)
            await asyncio.sleep(0.05)
            # The browser still holds version 0, which this session loaded
            return await service.replace(self.EMAIL, {"contractors": [{"amount": 1_000}]}, version=0)

        ledger = asyncio.run(scenario())
        assert store.conflicts == 0
        assert ledger.version == 2
        assert store.rows[self.EMAIL]["snapshot"]["wages"] == []
        assert store.rows[self.EMAIL]["snapshot"]["contractors"][0]["amount"] == 1_000


class TestSaveConflictFlag:
    """A rejected autosave is reported until the ledger is reloaded."""

    EMAIL = "founder@example.com"

    def test_conflict_flag_set_and_cleared_by_reload(self):
        store = FakeLedgerStore()
        service = LedgerService(store=store, quiet_seconds=60)

        async def scenario():
            await service.add_entry(self.EMAIL, ExpenseCategory.WAGES)
            # Another tab saved in the meantime
            store.rows[self.EMAIL] = {"snapshot": {}, "version": 3}
            ok = await service.flush(self.EMAIL)
            flagged = service.has_save_conflict(self.EMAIL)
            ledger = await service.reload(self.EMAIL)
            return ok, flagged, ledger

        ok, flagged, ledger = asyncio.run(scenario())
        assert ok is False
        assert flagged is True
        assert not service.has_save_conflict(self.EMAIL)
        assert ledger.version == 3
