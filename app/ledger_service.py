"""
Ledger Service

Keeps the in-memory expense ledger for each signed-in customer, applies the
entry mutations coming from the expense screens, and schedules the debounced
autosave after each one.

Ledgers are independent per customer; nothing is shared between them.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set, Tuple

from app.autosave import LedgerAutosaver
from app.expense_ledger import ExpenseCategory, ExpenseLedger
from app.ledger_store import LedgerConflictError, LedgerStore

logger = logging.getLogger(__name__)


class LedgerService:
    """Session ledgers plus one autosaver per customer."""

    def __init__(self, store: Optional[LedgerStore] = None, quiet_seconds: Optional[float] = None):
        self._store = store
        self.quiet_seconds = quiet_seconds
        self._ledgers: Dict[str, ExpenseLedger] = {}
        self._autosavers: Dict[str, LedgerAutosaver] = {}
        # One write at a time per customer, so a save never races this session's own
        self._write_locks: Dict[str, Tuple[asyncio.AbstractEventLoop, asyncio.Lock]] = {}
        # Versions this session loaded or wrote itself
        self._session_versions: Dict[str, Set[int]] = {}
        self._conflicts: Set[str] = set()

    @property
    def store(self) -> LedgerStore:
        if self._store is None:
            self._store = LedgerStore()
        return self._store

    # --- loading -----------------------------------------------------------

    async def get_ledger(self, customer_email: str) -> ExpenseLedger:
        """Return the session ledger, loading it from the record store on first use."""
        ledger = self._ledgers.get(customer_email)
        if ledger is not None:
            return ledger

        loop = asyncio.get_running_loop()
        ledger = await loop.run_in_executor(None, self.store.load, customer_email)
        # Another request may have loaded it while we were waiting
        ledger = self._ledgers.setdefault(customer_email, ledger)
        self._session_versions.setdefault(customer_email, set()).add(ledger.version)
        return ledger

    async def reload(self, customer_email: str) -> ExpenseLedger:
        """Drop the session copy and read the stored snapshot again."""
        self.autosaver(customer_email).cancel()
        self._ledgers.pop(customer_email, None)
        self._conflicts.discard(customer_email)
        ledger = await self.get_ledger(customer_email)
        self._session_versions[customer_email] = {ledger.version}
        return ledger

    def has_save_conflict(self, customer_email: str) -> bool:
        """True once a save was rejected as stale; cleared by a reload or a successful save."""
        return customer_email in self._conflicts

    # --- persistence -------------------------------------------------------

    def autosaver(self, customer_email: str) -> LedgerAutosaver:
        autosaver = self._autosavers.get(customer_email)
        if autosaver is None:
            autosaver = LedgerAutosaver(
                self._save_callable(customer_email),
                quiet_seconds=self.quiet_seconds,
                name=customer_email,
            )
            self._autosavers[customer_email] = autosaver
        return autosaver

    def _save_callable(self, customer_email: str):
        async def save():
            await self.persist(customer_email)
        return save

    def _write_lock(self, customer_email: str) -> asyncio.Lock:
        # asyncio locks belong to one event loop; start a fresh one if the loop changed
        loop = asyncio.get_running_loop()
        entry = self._write_locks.get(customer_email)
        if entry is None or entry[0] is not loop:
            entry = (loop, asyncio.Lock())
            self._write_locks[customer_email] = entry
        return entry[1]

    async def persist(self, customer_email: str) -> Optional[int]:
        """
        Write the session ledger's snapshot at its current version.

        Writes for one customer are serialized: a save that starts while
        another is in flight waits for it and then writes at the version that
        write produced. The snapshot is taken on the event loop; only the
        write runs in the executor.
        """
        async with self._write_lock(customer_email):
            return await self._write(customer_email)

    async def _write(self, customer_email: str) -> Optional[int]:
        ledger = self._ledgers.get(customer_email)
        if ledger is None:
            return None

        revision = ledger.revision
        snapshot = ledger.to_dict()
        loop = asyncio.get_running_loop()
        try:
            new_version = await loop.run_in_executor(
                None, self.store.save_snapshot, customer_email, snapshot, ledger.version
            )
        except LedgerConflictError:
            self._conflicts.add(customer_email)
            raise

        self._conflicts.discard(customer_email)
        self._session_versions.setdefault(customer_email, set()).add(new_version)
        if ledger.revision == revision:
            ledger.mark_clean(version=new_version)
        else:
            # Edited during the write; stays dirty for the next save
            ledger.version = new_version
        return new_version

    def schedule_save(self, customer_email: str):
        self.autosaver(customer_email).schedule()

    async def flush(self, customer_email: str) -> bool:
        """Save now if there is anything unsaved."""
        ledger = self._ledgers.get(customer_email)
        if ledger is None or not ledger.dirty:
            self.autosaver(customer_email).cancel()
            return True
        return await self.autosaver(customer_email).flush()

    async def flush_all(self) -> int:
        """Save every dirty session ledger (shutdown). Returns how many saved cleanly."""
        saved = 0
        for customer_email in list(self._ledgers):
            if await self.flush(customer_email):
                saved += 1
        return saved

    # --- mutations ---------------------------------------------------------

    async def add_entry(self, customer_email: str, category: ExpenseCategory):
        ledger = await self.get_ledger(customer_email)
        entry = ledger.add_entry(category)
        self.schedule_save(customer_email)
        return entry

    async def update_entry(self, customer_email: str, category: ExpenseCategory, entry_id: str, patch: Dict[str, Any]):
        ledger = await self.get_ledger(customer_email)
        entry = ledger.update_entry(category, entry_id, patch)
        if entry is not None:
            self.schedule_save(customer_email)
        return entry

    async def remove_entry(self, customer_email: str, category: ExpenseCategory, entry_id: str) -> bool:
        ledger = await self.get_ledger(customer_email)
        removed = ledger.remove_entry(category, entry_id)
        if removed:
            self.schedule_save(customer_email)
        return removed

    async def replace(self, customer_email: str, snapshot: Dict[str, Any], version: Optional[int] = None) -> ExpenseLedger:
        """
        Replace the whole ledger from a browser snapshot and save it right away.

        `version` is the version the browser loaded. A version this session
        loaded or wrote itself counts as current, so the session's own
        autosaves never make the browser's copy stale. If the stored snapshot
        has moved on since, the session ledger is reloaded from the store and
        LedgerConflictError propagates.
        """
        ledger = await self.get_ledger(customer_email)
        self.autosaver(customer_email).cancel()
        try:
            async with self._write_lock(customer_email):
                if version is not None and version not in self._session_versions.get(customer_email, ()):
                    ledger.version = version
                ledger.replace_from_dict(snapshot)
                await self._write(customer_email)
        except LedgerConflictError:
            await self.reload(customer_email)
            raise
        return ledger


_service: Optional[LedgerService] = None


def get_ledger_service() -> LedgerService:
    """Process-wide ledger service (FastAPI dependency)."""
    global _service
    if _service is None:
        _service = LedgerService()
    return _service
