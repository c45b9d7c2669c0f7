"""
Document Generation Jobs

Tracks document-generation requests made to the external document service.

Key components:
- job_types: Status enums and schemas for document jobs
- poller: Bounded status poll loop with an abandoned terminal state
  (import from app.jobs.poller; it depends on app.document_service)
- utils: Duration formatting and error payload helpers
"""

from app.jobs.job_types import (
    DocumentJobStatus,
    DocumentStatus,
    PollOutcome,
    PollResult,
)

__all__ = [
    "DocumentJobStatus",
    "DocumentStatus",
    "PollOutcome",
    "PollResult",
]
