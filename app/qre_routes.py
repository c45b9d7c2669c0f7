"""
QRE Routes
QRE breakdown with the federal credit estimate, and the QRE workbook export.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from app.auth_permissions import CustomerSession, get_customer_session
from app.credit_estimate_engine import estimate_credit
from app.ledger_service import LedgerService, get_ledger_service
from app.ledger_store import RecordStoreUnavailable
from app.qre_engine import build_qre_breakdown, summarize_ledger
from app.qre_workbook import generate_qre_workbook
from app.router_utils import wrap_response
from app.schemas import QRECalculateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/qre", tags=["qre"])


async def _load(service: LedgerService, session: CustomerSession):
    try:
        return await service.get_ledger(session.email)
    except RecordStoreUnavailable:
        raise HTTPException(status_code=503, detail="Record store unavailable")
    except Exception as e:
        logger.error(f"Failed to load ledger for {session.email}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load expenses")


@router.post("/calculate")
async def calculate_qre(
    request: Optional[QRECalculateRequest] = None,
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """Per-category QRE breakdown, totals and the federal credit estimate."""
    ledger = await _load(service, session)
    additional_years = request.additionalYears if request else 0

    summary = summarize_ledger(ledger)
    estimate = estimate_credit(summary, additional_years=additional_years)

    return wrap_response({
        "breakdown": build_qre_breakdown(ledger),
        "summary": summary.to_dict(),
        "estimate": estimate.to_dict(),
    })


@router.get("/workbook")
async def download_qre_workbook(
    additional_years: int = Query(0, ge=0),
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """QRE workbook (.xlsx) for the current ledger."""
    ledger = await _load(service, session)
    output = generate_qre_workbook(ledger, additional_years=additional_years)

    filename = f"qre_summary_{datetime.utcnow().strftime('%Y%m%d')}.xlsx"
    logger.info(f"QRE workbook generated for {session.email} ({ledger.entry_count()} entries)")
    return StreamingResponse(
        output,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )
