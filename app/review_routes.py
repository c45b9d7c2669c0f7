"""
Review Routes - Final Review & Document Generation
Implements endpoints for:
- Review screen data with completion checklist
- Starting document generation
- Reading document generation status
- Listing generated documents and counting downloads
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException

from .auth_permissions import CustomerSession, get_customer_session
from .document_service import DocumentServiceClient, DocumentServiceError
from .jobs.job_types import DocumentJobStatus
from .jobs.utils import create_error_response
from .ledger_service import LedgerService, get_ledger_service
from .company_routes import company_to_info
from .ledger_store import RecordStoreUnavailable
from .qre_engine import build_qre_breakdown
from .schemas import DocumentStatusRequest, TrackDownloadRequest
from .supabase_client import get_supabase, get_company_by_customer_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/review", tags=["review"])

DOCUMENT_JOBS_TABLE = "document_jobs"
DOCUMENTS_TABLE = "documents"

DOCUMENT_TYPES = {
    "form_6765": ("IRS Form 6765 - R&D Credit Form",
                  "Official IRS form for claiming the federal R&D tax credit"),
    "technical_narrative": ("Technical Narrative & Documentation",
                            "Detailed narrative explaining your qualifying R&D activities and technological challenges"),
    "qre_workbook": ("QRE Calculation Workbook",
                     "Excel workbook with detailed QRE calculations and supporting schedules"),
    "compliance_memo": ("Compliance & Filing Memo",
                        "Professional memo outlining compliance requirements and filing instructions"),
    "recordkeeping_checklist": ("Record-keeping & Documentation Checklist",
                                "Comprehensive checklist for maintaining proper R&D credit documentation"),
}
DEFAULT_DOCUMENT_TYPE = ("R&D Tax Credit Document", "Supporting documentation for your R&D tax credit claim")


def get_document_client() -> DocumentServiceClient:
    return DocumentServiceClient()


# ============================================================================
# Helpers
# ============================================================================

def completion_status(company: Optional[Dict[str, Any]], has_expenses: bool) -> Dict[str, Any]:
    """Checklist shown on the review screen. Documents need a company name and some expenses."""
    company = company or {}
    has_name = bool(company.get("company_name"))
    return {
        "companyInfo": 100 if has_name else 0,
        "rdActivities": 100 if company.get("rd_activities") else 0,
        "expenses": 100 if has_expenses else 0,
        "canGenerate": has_name and has_expenses,
    }


def _record_job(tracking_id: str, email: str, status: DocumentJobStatus, progress: float = 0,
                current_step: Optional[str] = None, new_job: bool = False):
    supabase = get_supabase()
    if not supabase:
        return
    now = datetime.utcnow().isoformat()
    row = {
        "tracking_id": tracking_id,
        "customer_email": email,
        "status": status.value,
        "progress": progress,
        "current_step": current_step,
        "updated_at": now,
    }
    if new_job:
        # The worker measures the polling ceiling from here
        row["created_at"] = now
    try:
        supabase.table(DOCUMENT_JOBS_TABLE).upsert(row, on_conflict="tracking_id").execute()
    except Exception as e:
        # Bookkeeping only; the document service remains the source of truth
        logger.warning(f"Failed to record document job {tracking_id}: {e}")


def _job_belongs_to(tracking_id: str, email: str) -> bool:
    supabase = get_supabase()
    if not supabase:
        return False
    try:
        result = supabase.table(DOCUMENT_JOBS_TABLE)\
            .select("tracking_id")\
            .eq("tracking_id", tracking_id)\
            .eq("customer_email", email)\
            .limit(1)\
            .execute()
    except Exception as e:
        logger.error(f"Failed to look up document job {tracking_id}: {e}")
        raise HTTPException(status_code=503, detail="Record store unavailable")
    return bool(result.data)


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/data")
async def review_data(
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """Company info, R&D activities and expenses in one payload."""
    try:
        ledger = await service.get_ledger(session.email)
    except RecordStoreUnavailable:
        raise HTTPException(status_code=503, detail="Record store unavailable")
    except Exception as e:
        logger.error(f"Failed to load ledger for {session.email}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load expenses")

    company = get_company_by_customer_id(session.customer_id)
    has_expenses = not ledger.is_empty()

    if not company:
        return {
            "companyInfo": None,
            "rdActivities": None,
            "expenses": None,
            "completionStatus": completion_status(None, has_expenses),
        }

    return {
        "companyInfo": company_to_info(company),
        "rdActivities": {
            "businessDescription": company.get("business_description") or "",
            "rdActivities": company.get("rd_activities") or "",
        },
        "expenses": build_qre_breakdown(ledger),
        "completionStatus": completion_status(company, has_expenses),
    }


@router.post("/generate-documents")
async def generate_documents(
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service),
    client: DocumentServiceClient = Depends(get_document_client)
):
    """Save pending edits, then ask the document service to start generation."""
    if not client.configured:
        raise HTTPException(status_code=503, detail="Document service unavailable")

    try:
        await service.get_ledger(session.email)
    except RecordStoreUnavailable:
        raise HTTPException(status_code=503, detail="Record store unavailable")
    if not await service.flush(session.email):
        logger.warning(f"Generating documents for {session.email} with an unsaved snapshot")

    try:
        tracking_id = await client.request_generation(session.email)
    except DocumentServiceError as e:
        raise HTTPException(
            status_code=502,
            detail=create_error_response("service_error", str(e))
        )

    _record_job(tracking_id, session.email, DocumentJobStatus.PENDING, current_step="Queued", new_job=True)

    return {
        "success": True,
        "message": "Document generation started. You will receive an email when complete.",
        "trackingId": tracking_id,
        "estimatedCompletion": "5-10 minutes",
    }


@router.post("/document-status")
async def document_status(
    request: DocumentStatusRequest,
    session: CustomerSession = Depends(get_customer_session),
    client: DocumentServiceClient = Depends(get_document_client)
):
    """One status reading for a tracking id owned by the customer."""
    if not _job_belongs_to(request.trackingId, session.email):
        raise HTTPException(status_code=404, detail="Document job not found")

    try:
        status = await client.fetch_status(request.trackingId)
    except DocumentServiceError as e:
        error_type = "connection_error" if e.transient else "service_error"
        raise HTTPException(
            status_code=502,
            detail=create_error_response(error_type, str(e))
        )

    job_status = DocumentJobStatus.COMPLETED if status.is_complete else (
        DocumentJobStatus.FAILED if status.is_failed else DocumentJobStatus.PENDING
    )
    _record_job(request.trackingId, session.email, job_status, status.progress, status.currentStep)

    return {
        "status": job_status.value,
        "progress": status.progress,
        "currentStep": status.currentStep,
        "estimatedTimeRemaining": status.estimatedTimeRemaining,
    }


def _document_entry(row: Dict[str, Any]) -> Dict[str, Any]:
    file_type = row.get("file_type") or ""
    display_name, description = DOCUMENT_TYPES.get(file_type, DEFAULT_DOCUMENT_TYPE)
    return {
        "id": row.get("id"),
        "fileName": row.get("file_name") or "",
        "displayName": display_name,
        "fileType": file_type,
        "description": description,
        "size": row.get("file_size") or 0,
        "uploadedAt": row.get("uploaded_at"),
        "downloadUrl": row.get("download_url") or "",
        "downloadCount": row.get("download_count") or 0,
        "lastDownloaded": row.get("last_downloaded"),
    }


@router.post("/list")
async def list_documents(session: CustomerSession = Depends(get_customer_session)):
    """Generated documents for the customer, newest first."""
    supabase = get_supabase()
    if not supabase:
        raise HTTPException(status_code=503, detail="Record store unavailable")

    try:
        result = supabase.table(DOCUMENTS_TABLE)\
            .select("*")\
            .eq("customer_email", session.email)\
            .order("uploaded_at", desc=True)\
            .execute()
    except Exception as e:
        logger.error(f"Failed to list documents for {session.email}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch documents")

    return {"documents": [_document_entry(row) for row in result.data or []]}


@router.post("/track-download")
async def track_download(
    request: TrackDownloadRequest,
    session: CustomerSession = Depends(get_customer_session)
):
    """
    Count a download of one of the customer's documents.
    Counting is best effort; a failure never blocks the download.
    """
    supabase = get_supabase()
    if not supabase:
        return {"success": True, "tracked": False}

    try:
        result = supabase.table(DOCUMENTS_TABLE)\
            .select("id, download_count")\
            .eq("id", request.documentId)\
            .eq("customer_email", session.email)\
            .limit(1)\
            .execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="Document not found")

        count = int(result.data[0].get("download_count") or 0) + 1
        supabase.table(DOCUMENTS_TABLE)\
            .update({"download_count": count, "last_downloaded": datetime.utcnow().isoformat()})\
            .eq("id", request.documentId)\
            .execute()
    except HTTPException:
        raise
    except Exception as e:
        logger.warning(f"Could not record download of {request.documentId}: {e}")
        return {"success": True, "tracked": False}

    return {"success": True, "tracked": True, "downloadCount": count}
