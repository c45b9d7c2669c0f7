"""
Ledger Autosave

Debounced background persistence for an expense ledger.

A LedgerAutosaver owns at most one pending save task. Scheduling a save while
another is still waiting out its quiet window cancels the waiting one and
starts a fresh window, so a burst of edits produces one write. A save that is
already writing is left to finish; the replacement waits its own window.

Save failures never propagate: they are logged and the in-memory ledger is
left untouched.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from app.ledger_store import LedgerConflictError
from app.settings_loader import get_setting

logger = logging.getLogger(__name__)


class LedgerAutosaver:
    """
    Single-slot debounced save queue.

    Args:
        save_func: Callable with no arguments performing the save. May be a
            coroutine function or a plain function (run in the default executor).
        quiet_seconds: Quiet window before a scheduled save runs.
        name: Label used in log lines (usually the customer email).
    """

    def __init__(
        self,
        save_func: Callable[[], Any],
        quiet_seconds: Optional[float] = None,
        name: str = "",
    ):
        self.save_func = save_func
        if quiet_seconds is None:
            quiet_seconds = float(get_setting("autosave_quiet_seconds"))
        self.quiet_seconds = quiet_seconds
        self.name = name
        self.save_count = 0
        self.failure_count = 0
        self.last_error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._waiting = False

    @property
    def pending(self) -> bool:
        """True while a scheduled save has not finished."""
        return self._task is not None and not self._task.done()

    def _task_is_local(self) -> bool:
        # A task left over from a loop that has since gone away cannot be awaited
        # or cancelled from here.
        try:
            return self._task.get_loop() is asyncio.get_running_loop()
        except RuntimeError:
            return False

    def schedule(self) -> asyncio.Task:
        """(Re)start the quiet window. Must be called from a running event loop."""
        if self.pending and self._waiting and self._task_is_local():
            self._task.cancel()
            logger.debug(f"[Autosave] {self.name}: replaced pending save")
        # Set before the task first runs so a second schedule() in the same tick replaces it
        self._waiting = True
        self._task = asyncio.create_task(self._delayed_save())
        return self._task

    def cancel(self) -> bool:
        """Drop a save that is still waiting. Returns True if one was dropped."""
        if self.pending and self._waiting and self._task_is_local():
            self._task.cancel()
            self._task = None
            self._waiting = False
            return True
        return False

    async def flush(self) -> bool:
        """
        Save immediately, skipping any quiet window.
        Returns True if the save succeeded.
        """
        if self.pending and self._task_is_local():
            if self._waiting:
                self._task.cancel()
            else:
                # Let an in-flight write land before writing again
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._waiting = False
        return await self._run_save()

    async def _delayed_save(self):
        try:
            await asyncio.sleep(self.quiet_seconds)
        except asyncio.CancelledError:
            return False
        self._waiting = False
        return await self._run_save()

    async def _run_save(self) -> bool:
        try:
            if asyncio.iscoroutinefunction(self.save_func):
                await self.save_func()
            else:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self.save_func)
        except asyncio.CancelledError:
            raise
        except LedgerConflictError as e:
            self.failure_count += 1
            self.last_error = str(e)
            logger.warning(f"[Autosave] {self.name}: skipped, stale snapshot ({e})")
            return False
        except Exception as e:
            self.failure_count += 1
            self.last_error = str(e)
            logger.error(f"[Autosave] {self.name}: save failed: {e}")
            return False

        self.save_count += 1
        self.last_error = None
        logger.info(f"[Autosave] {self.name}: saved")
        return True
