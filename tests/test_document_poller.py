"""
Document Service & Poller Tests

The HTTP client is exercised against httpx.MockTransport; the poller runs
with a fake clock and sleep so nothing actually waits.
Run with: python -m pytest tests/test_document_poller.py -v
"""

import asyncio
import json

import httpx
import pytest

from app.document_service import DocumentServiceClient, DocumentServiceError
from app.jobs.job_types import DocumentStatus, PollOutcome
from app.jobs.poller import DocumentStatusPoller


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.now += seconds


class ScriptedClient:
    """Returns (or raises) the scripted readings in order, repeating the last one."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    async def fetch_status(self, tracking_id):
        item = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(item, Exception):
            raise item
        return item


def _poller(client, clock, **kwargs):
    return DocumentStatusPoller(
        client,
        interval_seconds=kwargs.pop("interval_seconds", 5),
        timeout_seconds=kwargs.pop("timeout_seconds", 900),
        sleep=clock.sleep,
        clock=clock,
        **kwargs
    )


# =============================================================================
# POLLER
# =============================================================================

class TestDocumentStatusPoller:
    """Bounded poll loop."""

    def test_completes(self):
        clock = FakeClock()
        client = ScriptedClient([
            DocumentStatus(progress=10, currentStep="Collecting data"),
            DocumentStatus(progress=60, currentStep="Writing narrative"),
            DocumentStatus(progress=100, currentStep="Ready", status="completed"),
        ])
        seen = []
        result = asyncio.run(_poller(client, clock, on_status=seen.append).poll("trk-1"))

        assert result.outcome == PollOutcome.COMPLETED
        assert result.attempts == 3
        assert result.elapsed_seconds == 10
        assert [s.progress for s in seen] == [10, 60, 100]

    def test_full_progress_counts_as_complete(self):
        clock = FakeClock()
        client = ScriptedClient([DocumentStatus(progress=100, status="pending")])
        result = asyncio.run(_poller(client, clock).poll("trk-2"))
        assert result.outcome == PollOutcome.COMPLETED

    def test_abandoned_after_ceiling(self):
        clock = FakeClock()
        client = ScriptedClient([DocumentStatus(progress=40, currentStep="Still going")])
        result = asyncio.run(_poller(client, clock).poll("trk-3"))

        assert result.outcome == PollOutcome.ABANDONED
        assert result.elapsed_seconds <= 900
        # one reading at t=0 and one every 5s up to the ceiling
        assert result.attempts == 900 // 5 + 1
        assert result.last_status.progress == 40

    def test_transient_errors_are_retried(self):
        clock = FakeClock()
        client = ScriptedClient([
            DocumentServiceError("timeout"),
            DocumentServiceError("502", status_code=502),
            DocumentStatus(progress=100, status="completed"),
        ])
        result = asyncio.run(_poller(client, clock).poll("trk-4"))
        assert result.outcome == PollOutcome.COMPLETED
        assert result.attempts == 3
        assert result.error is None

    def test_persistent_errors_end_abandoned(self):
        clock = FakeClock()
        client = ScriptedClient([DocumentServiceError("unreachable")])
        result = asyncio.run(_poller(client, clock, timeout_seconds=30).poll("trk-5"))
        assert result.outcome == PollOutcome.ABANDONED
        assert result.last_status is None
        assert "unreachable" in result.error

    def test_non_transient_error_fails(self):
        clock = FakeClock()
        client = ScriptedClient([DocumentServiceError("not found", status_code=404, transient=False)])
        result = asyncio.run(_poller(client, clock).poll("trk-6"))
        assert result.outcome == PollOutcome.FAILED
        assert client.calls == 1

    def test_service_reported_failure(self):
        clock = FakeClock()
        client = ScriptedClient([DocumentStatus(progress=30, status="failed")])
        result = asyncio.run(_poller(client, clock).poll("trk-7"))
        assert result.outcome == PollOutcome.FAILED


# =============================================================================
# HTTP CLIENT
# =============================================================================

def _client(handler, **kwargs):
    return DocumentServiceClient(
        base_url="https://docs.test/api/",
        token="svc-token",
        timeout=5,
        transport=httpx.MockTransport(handler),
        **kwargs
    )


class TestDocumentServiceClient:
    """Generation request and status fetch."""

    def test_request_generation(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"trackingId": "trk-99"})

        tracking_id = asyncio.run(_client(handler).request_generation("owner@example.com"))

        assert tracking_id == "trk-99"
        assert seen["url"] == "https://docs.test/api/generate"
        assert seen["auth"] == "Bearer svc-token"
        assert seen["body"] == {"email": "owner@example.com"}

    def test_missing_tracking_id(self):
        handler = lambda request: httpx.Response(200, json={})
        with pytest.raises(DocumentServiceError):
            asyncio.run(_client(handler).request_generation("owner@example.com"))

    def test_fetch_status(self):
        def handler(request):
            assert request.url.path == "/api/status/trk-1"
            return httpx.Response(200, json={
                "progress": 55,
                "currentStep": "Generating technical narrative...",
                "estimatedTimeRemaining": "4 minutes",
                "status": "pending",
            })

        status = asyncio.run(_client(handler).fetch_status("trk-1"))
        assert status.progress == 55
        assert not status.is_complete

    def test_server_error_is_transient(self):
        handler = lambda request: httpx.Response(503, text="busy")
        with pytest.raises(DocumentServiceError) as exc:
            asyncio.run(_client(handler).fetch_status("trk-1"))
        assert exc.value.transient is True
        assert exc.value.status_code == 503

    def test_client_error_is_not_transient(self):
        handler = lambda request: httpx.Response(404, text="unknown")
        with pytest.raises(DocumentServiceError) as exc:
            asyncio.run(_client(handler).fetch_status("trk-1"))
        assert exc.value.transient is False

    def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(DocumentServiceError) as exc:
            asyncio.run(_client(handler).fetch_status("trk-1"))
        assert exc.value.transient is True

    def test_malformed_status(self):
        handler = lambda request: httpx.Response(200, json={"progress": 500})
        with pytest.raises(DocumentServiceError):
            asyncio.run(_client(handler).fetch_status("trk-1"))

    def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("DOCUMENT_SERVICE_URL", raising=False)
        client = DocumentServiceClient()
        assert not client.configured
        with pytest.raises(DocumentServiceError) as exc:
            asyncio.run(client.request_generation("owner@example.com"))
        assert exc.value.transient is False
