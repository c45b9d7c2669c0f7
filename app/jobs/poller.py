"""
Document Status Poller

Polls the document service for one tracking id until the job completes,
fails, or the time ceiling is reached. Reaching the ceiling is a normal
terminal outcome (abandoned), not an error; the loop never raises for it.

Transient fetch errors are logged and retried on the next tick. A
non-transient error (e.g. 404 for an unknown tracking id) ends the loop as
failed.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from app.document_service import DocumentServiceClient, DocumentServiceError
from app.jobs.job_types import DocumentStatus, PollOutcome, PollResult
from app.jobs.utils import format_duration
from app.settings_loader import get_setting

logger = logging.getLogger(__name__)


class DocumentStatusPoller:
    """
    Bounded poll loop for document generation.

    Args:
        client: DocumentServiceClient (or anything with an async fetch_status)
        interval_seconds: Pause between readings.
        timeout_seconds: Ceiling after which the job is abandoned.
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock, injectable for tests.
        on_status: Optional callback receiving every successful reading.
    """

    def __init__(
        self,
        client: Optional[DocumentServiceClient] = None,
        interval_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_status: Optional[Callable[[DocumentStatus], None]] = None,
    ):
        self.client = client or DocumentServiceClient()
        self.interval_seconds = float(
            interval_seconds if interval_seconds is not None else get_setting("document_poll_interval_seconds")
        )
        self.timeout_seconds = float(
            timeout_seconds if timeout_seconds is not None else get_setting("document_poll_timeout_seconds")
        )
        self._sleep = sleep
        self._clock = clock
        self.on_status = on_status

    async def poll(self, tracking_id: str) -> PollResult:
        """Poll until a terminal state. Always returns a PollResult."""
        started = self._clock()
        attempts = 0
        last_status: Optional[DocumentStatus] = None
        last_error: Optional[str] = None

        while True:
            attempts += 1
            try:
                status = await self.client.fetch_status(tracking_id)
            except DocumentServiceError as e:
                last_error = str(e)
                if not e.transient:
                    logger.error(f"[Poller] {tracking_id}: giving up, {e}")
                    return self._result(tracking_id, PollOutcome.FAILED, last_status, attempts, started, last_error)
                logger.warning(f"[Poller] {tracking_id}: status fetch failed (attempt {attempts}): {e}")
            else:
                last_status = status
                last_error = None
                if self.on_status:
                    self.on_status(status)
                if status.is_complete:
                    logger.info(f"[Poller] {tracking_id}: completed after {attempts} readings")
                    return self._result(tracking_id, PollOutcome.COMPLETED, status, attempts, started)
                if status.is_failed:
                    logger.warning(f"[Poller] {tracking_id}: service reported failure at {status.currentStep!r}")
                    return self._result(tracking_id, PollOutcome.FAILED, status, attempts, started)

            elapsed = self._clock() - started
            if elapsed + self.interval_seconds > self.timeout_seconds:
                logger.warning(
                    f"[Poller] {tracking_id}: abandoned after {format_duration(elapsed)} ({attempts} readings)"
                )
                return self._result(tracking_id, PollOutcome.ABANDONED, last_status, attempts, started, last_error)

            await self._sleep(self.interval_seconds)

    def _result(self, tracking_id, outcome, last_status, attempts, started, error=None) -> PollResult:
        return PollResult(
            tracking_id=tracking_id,
            outcome=outcome,
            last_status=last_status,
            attempts=attempts,
            elapsed_seconds=round(self._clock() - started, 3),
            error=error,
        )
