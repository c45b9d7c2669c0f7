#!/usr/bin/env python3
"""
Document Job Watcher

A worker process that follows document-generation jobs to completion.
It picks up `pending` rows from document_jobs, polls the document service for
each tracking id, mirrors progress into the row, and records the terminal
state (completed, failed or abandoned).

Usage:
    python worker.py [--concurrency=N] [--scan-interval=S]

Features:
- Bounded polling per job (abandoned after the configured ceiling)
- Transient document service errors are retried
- Graceful shutdown on signals (unfinished jobs stay pending for the next run)
"""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
import argparse

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("rdcredit.worker")

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.supabase_client import get_supabase
from app.document_service import DocumentServiceClient
from app.jobs.job_types import DocumentJobStatus, DocumentStatus, PollOutcome, PollResult
from app.jobs.poller import DocumentStatusPoller
from app.jobs.utils import get_default_hint, format_duration
from app.settings_loader import get_setting

DOCUMENT_JOBS_TABLE = "document_jobs"

OUTCOME_STATUS = {
    PollOutcome.COMPLETED: DocumentJobStatus.COMPLETED,
    PollOutcome.FAILED: DocumentJobStatus.FAILED,
    PollOutcome.ABANDONED: DocumentJobStatus.ABANDONED,
}


def job_age_seconds(created_at: Optional[str], now: Optional[datetime] = None) -> float:
    """Age of a job from its ISO created_at stamp. A missing or unreadable stamp counts as new."""
    if not created_at:
        return 0.0
    try:
        created = datetime.fromisoformat(str(created_at).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unreadable created_at {created_at!r}; treating job as new")
        return 0.0
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc).replace(tzinfo=None)
    now = now or datetime.utcnow()
    return max(0.0, (now - created).total_seconds())


class DocumentJobWatcher:
    """
    Worker that watches pending document jobs.
    """

    def __init__(
        self,
        concurrency: int = 5,
        scan_interval: float = 10.0,
        supabase=None,
        client: Optional[DocumentServiceClient] = None,
        poller_factory: Optional[Callable[..., DocumentStatusPoller]] = None
    ):
        self.concurrency = concurrency
        self.scan_interval = scan_interval
        self.supabase = supabase or get_supabase()
        self.client = client or DocumentServiceClient()
        self.poller_factory = poller_factory or DocumentStatusPoller
        self.timeout_seconds = float(get_setting("document_poll_timeout_seconds"))

        self._running = False
        self._active_tasks: Dict[str, asyncio.Task] = {}
        self._shutdown_event = asyncio.Event()

        logger.info(f"Document job watcher initialized with concurrency={concurrency}")

    async def start(self):
        """Start the watcher and follow jobs until shutdown."""
        if not self.supabase:
            logger.error("Record store not configured; nothing to watch")
            return
        if not self.client.configured:
            logger.error("DOCUMENT_SERVICE_URL not set; nothing to poll")
            return

        self._running = True
        logger.info("Document job watcher starting...")

        # Set up signal handlers
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._handle_shutdown)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                pass

        try:
            await self._scan_loop()
        except asyncio.CancelledError:
            logger.info("Watcher cancelled")
        finally:
            await self._cleanup()

    def _handle_shutdown(self):
        """Handle shutdown signal."""
        logger.info("Watcher received shutdown signal")
        self._running = False
        self._shutdown_event.set()

    async def _scan_loop(self):
        """Main loop that picks up pending jobs."""
        while self._running:
            try:
                self.scan_once()
            except Exception as e:
                logger.error(f"Error scanning document jobs: {e}")

            # Wait before next scan
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.scan_interval
                )
                break
            except asyncio.TimeoutError:
                pass

        logger.info("Scan loop stopped")

    def scan_once(self) -> int:
        """Start watching pending jobs up to the concurrency limit. Returns how many started."""
        available_slots = self.concurrency - len(self._active_tasks)
        if available_slots <= 0:
            return 0

        result = self.supabase.table(DOCUMENT_JOBS_TABLE)\
            .select("tracking_id, customer_email, status, created_at")\
            .eq("status", DocumentJobStatus.PENDING.value)\
            .order("updated_at")\
            .limit(self.concurrency)\
            .execute()

        started = 0
        for row in result.data or []:
            tracking_id = row.get("tracking_id")
            if not tracking_id or tracking_id in self._active_tasks:
                continue
            if started >= available_slots:
                break
            task = asyncio.create_task(self.watch_job(tracking_id, row.get("created_at")))
            self._active_tasks[tracking_id] = task
            task.add_done_callback(lambda t, tid=tracking_id: self._task_done(tid))
            started += 1
            logger.info(f"Watching document job {tracking_id}")
        return started

    def _task_done(self, tracking_id: str):
        """Called when a watch task completes."""
        self._active_tasks.pop(tracking_id, None)
        logger.debug(f"Task for document job {tracking_id} cleaned up")

    def remaining_budget(self, created_at: Optional[str]) -> float:
        """
        Seconds of polling left for a job created at `created_at`. The ceiling
        counts from job creation, so a restart does not grant a fresh window.
        """
        age = job_age_seconds(created_at)
        return self.timeout_seconds - age

    async def watch_job(self, tracking_id: str, created_at: Optional[str] = None) -> PollResult:
        """Poll one job to a terminal state and record it."""
        budget = self.remaining_budget(created_at)
        if budget <= 0:
            logger.warning(f"Document job {tracking_id} is past the polling ceiling; abandoning without polling")
            result = PollResult(
                tracking_id=tracking_id,
                outcome=PollOutcome.ABANDONED,
                attempts=0,
                elapsed_seconds=round(self.timeout_seconds - budget, 3),
            )
            self._record_outcome(tracking_id, result)
            return result

        def on_status(status: DocumentStatus):
            self._update_row(tracking_id, {
                "progress": status.progress,
                "current_step": status.currentStep,
            })

        poller = self.poller_factory(self.client, on_status=on_status, timeout_seconds=budget)
        result = await poller.poll(tracking_id)
        self._record_outcome(tracking_id, result)
        return result

    def _record_outcome(self, tracking_id: str, result: PollResult):
        status = OUTCOME_STATUS[result.outcome]
        update = {"status": status.value}
        if result.outcome == PollOutcome.COMPLETED:
            update["progress"] = 100
        else:
            update["error"] = result.error or get_default_hint(status.value)

        self._update_row(tracking_id, update)
        logger.info(
            f"Document job {tracking_id} {status.value} after {format_duration(result.elapsed_seconds)}"
        )

    def _update_row(self, tracking_id: str, fields: dict):
        try:
            self.supabase.table(DOCUMENT_JOBS_TABLE)\
                .update({**fields, "updated_at": datetime.utcnow().isoformat()})\
                .eq("tracking_id", tracking_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error updating document job {tracking_id}: {e}")

    async def _cleanup(self):
        """Clean up on shutdown. Interrupted jobs stay pending."""
        logger.info("Watcher cleaning up...")

        for tracking_id, task in list(self._active_tasks.items()):
            if not task.done():
                logger.info(f"Stopping watch of {tracking_id}")
                task.cancel()

        if self._active_tasks:
            await asyncio.gather(*self._active_tasks.values(), return_exceptions=True)

        logger.info("Watcher cleanup complete")


def main():
    """Main entry point for the watcher."""
    parser = argparse.ArgumentParser(description="Document Job Watcher")
    parser.add_argument(
        "--concurrency", "-c",
        type=int,
        default=int(os.environ.get("WORKER_CONCURRENCY", "5")),
        help="Number of jobs to watch concurrently (default: 5)"
    )
    parser.add_argument(
        "--scan-interval", "-s",
        type=float,
        default=float(os.environ.get("WORKER_SCAN_INTERVAL", "10.0")),
        help="Seconds between scans for pending jobs (default: 10.0)"
    )

    args = parser.parse_args()

    watcher = DocumentJobWatcher(
        concurrency=args.concurrency,
        scan_interval=args.scan_interval
    )

    try:
        asyncio.run(watcher.start())
    except KeyboardInterrupt:
        logger.info("Watcher interrupted")

    logger.info("Watcher stopped")


if __name__ == "__main__":
    main()
