"""
Document Job Types and Schemas

Enums and Pydantic models for document-generation jobs: the status reported by
the document service, the job status kept in `document_jobs`, and the outcome of a
poll loop.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class DocumentJobStatus(str, Enum):
    """Status of a document-generation job as recorded in document_jobs."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


class DocumentStatus(BaseModel):
    """One status reading from the document service."""
    progress: float = Field(default=0, ge=0, le=100)
    currentStep: str = ""
    estimatedTimeRemaining: Optional[str] = None
    status: str = DocumentJobStatus.PENDING.value

    @property
    def is_complete(self) -> bool:
        # The service reports "completed"; a full progress bar counts too
        return self.status == DocumentJobStatus.COMPLETED.value or self.progress >= 100

    @property
    def is_failed(self) -> bool:
        return self.status == DocumentJobStatus.FAILED.value


class PollOutcome(str, Enum):
    """How a poll loop ended."""
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


class PollResult(BaseModel):
    """Result of polling one tracking id to a terminal state."""
    tracking_id: str
    outcome: PollOutcome
    last_status: Optional[DocumentStatus] = None
    attempts: int = 0
    elapsed_seconds: float = 0
    error: Optional[str] = None
