"""
Document Job Watcher Tests
Run with: python -m pytest tests/test_worker.py -v
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from app.document_service import DocumentServiceClient
from app.jobs.job_types import DocumentStatus, PollOutcome, PollResult
from worker import DocumentJobWatcher, job_age_seconds


class FakePoller:
    """Reports the given readings through on_status, then returns `outcome`."""

    created = []

    def __init__(self, client, on_status=None, timeout_seconds=None, readings=(), outcome=PollOutcome.COMPLETED,
                 error=None):
        self.client = client
        self.timeout_seconds = timeout_seconds
        FakePoller.created.append(self)
        self.on_status = on_status
        self.readings = readings
        self.outcome = outcome
        self.error = error

    async def poll(self, tracking_id):
        for reading in self.readings:
            self.on_status(reading)
        return PollResult(
            tracking_id=tracking_id,
            outcome=self.outcome,
            last_status=self.readings[-1] if self.readings else None,
            attempts=len(self.readings),
            elapsed_seconds=12.0,
            error=self.error,
        )


def _watcher(supabase, **poller_kwargs):
    return DocumentJobWatcher(
        concurrency=2,
        scan_interval=0.01,
        supabase=supabase,
        client=DocumentServiceClient(base_url="https://docs.test"),
        poller_factory=lambda client, on_status=None, timeout_seconds=None: FakePoller(
            client, on_status, timeout_seconds, **poller_kwargs
        ),
    )


def _updates(supabase):
    return [c[0][0] for c in supabase.table.return_value.update.call_args_list]


class TestWatchJob:
    """One job polled to a terminal state."""

    def test_completed_job(self):
        supabase = MagicMock()
        watcher = _watcher(supabase, readings=(
            DocumentStatus(progress=40, currentStep="Writing narrative"),
            DocumentStatus(progress=100, currentStep="Done", status="completed"),
        ))

        result = asyncio.run(watcher.watch_job("trk-1"))

        assert result.outcome == PollOutcome.COMPLETED
        updates = _updates(supabase)
        assert updates[0]["progress"] == 40
        assert updates[0]["current_step"] == "Writing narrative"
        assert updates[-1]["status"] == "completed"
        assert updates[-1]["progress"] == 100
        supabase.table.return_value.update.return_value.eq.assert_called_with("tracking_id", "trk-1")

    def test_abandoned_job_records_hint(self):
        supabase = MagicMock()
        watcher = _watcher(supabase, outcome=PollOutcome.ABANDONED)

        asyncio.run(watcher.watch_job("trk-2"))

        final = _updates(supabase)[-1]
        assert final["status"] == "abandoned"
        assert "stopped waiting" in final["error"]

    def test_failed_job_records_error(self):
        supabase = MagicMock()
        watcher = _watcher(supabase, outcome=PollOutcome.FAILED, error="Document service returned 404")

        asyncio.run(watcher.watch_job("trk-3"))

        final = _updates(supabase)[-1]
        assert final["status"] == "failed"
        assert final["error"] == "Document service returned 404"

    def test_row_update_failure_is_logged(self):
        supabase = MagicMock()
        supabase.table.return_value.update.side_effect = RuntimeError("db down")
        watcher = _watcher(supabase)

        result = asyncio.run(watcher.watch_job("trk-4"))
        assert result.outcome == PollOutcome.COMPLETED


class TestPollingCeiling:
    """The ceiling counts from job creation, not from when this process started watching."""

    def setup_method(self):
        FakePoller.created.clear()

    def test_stale_pending_job_is_abandoned_without_polling(self):
        supabase = MagicMock()
        watcher = _watcher(supabase)
        created_at = (datetime.utcnow() - timedelta(minutes=20)).isoformat()

        result = asyncio.run(watcher.watch_job("trk-old", created_at))

        assert result.outcome == PollOutcome.ABANDONED
        assert result.attempts == 0
        assert FakePoller.created == []
        final = _updates(supabase)[-1]
        assert final["status"] == "abandoned"
        assert "stopped waiting" in final["error"]

    def test_resumed_job_gets_only_the_remaining_window(self):
        watcher = _watcher(MagicMock())
        created_at = (datetime.now(timezone.utc) - timedelta(minutes=10)).isoformat()

        asyncio.run(watcher.watch_job("trk-resumed", created_at))

        budget = FakePoller.created[-1].timeout_seconds
        assert 290 <= budget <= 300

    def test_new_job_gets_the_full_window(self):
        watcher = _watcher(MagicMock())
        asyncio.run(watcher.watch_job("trk-new"))
        assert FakePoller.created[-1].timeout_seconds == 15 * 60

    def test_job_age(self):
        now = datetime(2026, 1, 1, 12, 0, 0)
        assert job_age_seconds("2026-01-01T11:45:00Z", now=now) == 900
        assert job_age_seconds("2026-01-01T11:59:00", now=now) == 60
        assert job_age_seconds(None, now=now) == 0
        assert job_age_seconds("yesterday", now=now) == 0


class TestScan:
    """Pending rows are picked up up to the concurrency limit."""

    def test_scan_respects_concurrency(self):
        supabase = MagicMock()
        supabase.table.return_value.select.return_value.eq.return_value.order.return_value.limit.return_value.execute.return_value = MagicMock(
            data=[{"tracking_id": "a"}, {"tracking_id": "b"}, {"tracking_id": "c"}, {"tracking_id": None}]
        )
        watcher = _watcher(supabase)

        async def scenario():
            started = watcher.scan_once()
            watching = set(watcher._active_tasks)
            await asyncio.gather(*watcher._active_tasks.values())
            return started, watching

        started, watching = asyncio.run(scenario())
        assert started == 2
        assert watching == {"a", "b"}
        assert watcher._active_tasks == {}

    def test_start_without_document_service(self):
        watcher = DocumentJobWatcher(supabase=MagicMock(), client=DocumentServiceClient(base_url=""))
        # Returns immediately instead of scanning
        asyncio.run(watcher.start())
        watcher.supabase.table.assert_not_called()
