"""
Expense Routes
Load, edit, save and submit the customer's expense ledger.

Entry edits go to the in-memory session ledger and are persisted by the
debounced autosave; an explicit save writes the full snapshot immediately.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException

from app.auth_permissions import CustomerSession, get_customer_session
from app.ledger_service import LedgerService, get_ledger_service
from app.ledger_store import LedgerConflictError, RecordStoreUnavailable
from app.qre_engine import summarize_ledger
from app.router_utils import handle_conflict, parse_category
from app.schemas import SaveExpensesRequest
from app.supabase_client import get_company_by_customer_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/expenses", tags=["expenses"])


async def _session_ledger(service: LedgerService, session: CustomerSession):
    try:
        return await service.get_ledger(session.email)
    except RecordStoreUnavailable:
        raise HTTPException(status_code=503, detail="Record store unavailable")
    except Exception as e:
        logger.error(f"Failed to load ledger for {session.email}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load expenses")


def _ledger_payload(ledger, service: LedgerService) -> Dict[str, Any]:
    return {
        "expenses": ledger.to_dict(),
        "version": ledger.version,
        "dirty": ledger.dirty,
        "saveConflict": service.has_save_conflict(ledger.customer_email),
        "summary": summarize_ledger(ledger).to_dict(),
    }


# ============================================================================
# Whole-ledger Endpoints
# ============================================================================

@router.post("/load")
async def load_expenses(
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """
    Load (or start) the customer's ledger for this session. After a rejected
    save the stored snapshot is read again.
    """
    if service.has_save_conflict(session.email):
        logger.info(f"Reloading ledger for {session.email} after a save conflict")
        try:
            ledger = await service.reload(session.email)
        except RecordStoreUnavailable:
            raise HTTPException(status_code=503, detail="Record store unavailable")
        return _ledger_payload(ledger, service)
    ledger = await _session_ledger(service, session)
    return _ledger_payload(ledger, service)


@router.post("/save")
async def save_expenses(
    request: SaveExpensesRequest,
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """
    Replace the ledger with a full snapshot from the browser and save it.
    A snapshot based on an outdated version is rejected with 409.
    """
    await _session_ledger(service, session)
    try:
        ledger = await service.replace(session.email, request.expenses.dict(), version=request.version)
    except LedgerConflictError as e:
        handle_conflict(e.db_version, e.incoming_version)
        raise HTTPException(status_code=409, detail=str(e))
    except RecordStoreUnavailable:
        raise HTTPException(status_code=503, detail="Record store unavailable")
    except Exception as e:
        logger.error(f"Failed to save expenses for {session.email}: {e}")
        raise HTTPException(status_code=500, detail="Failed to save expenses")

    return {"success": True, **_ledger_payload(ledger, service)}


@router.post("/submit")
async def submit_expenses(
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """Flush any unsaved edits and write the final wage and expense rows."""
    ledger = await _session_ledger(service, session)

    if ledger.is_empty():
        raise HTTPException(status_code=400, detail="No expenses to submit")

    company = get_company_by_customer_id(session.customer_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")

    if not await service.flush(session.email):
        logger.warning(f"Submitting {session.email} with an unsaved snapshot")

    try:
        counts = service.store.submit(ledger, company["id"])
    except Exception as e:
        logger.error(f"Failed to submit expenses for {session.email}: {e}")
        raise HTTPException(status_code=500, detail="Failed to submit expenses")

    logger.info(f"Expenses submitted for company {company['id']}: {session.to_log_context()}")
    return {
        "success": True,
        "message": "Expenses submitted successfully",
        "submitted": counts,
        "summary": summarize_ledger(ledger).to_dict(),
    }


# ============================================================================
# Entry Endpoints
# ============================================================================

@router.post("/{category}/entries")
async def add_entry(
    category: str,
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """Append a zero-valued entry to a category."""
    expense_category = parse_category(category)
    ledger = await _session_ledger(service, session)
    entry = await service.add_entry(session.email, expense_category)
    return {
        "entry": entry.to_dict(),
        "summary": summarize_ledger(ledger).to_dict(),
        "saveConflict": service.has_save_conflict(session.email),
    }


@router.patch("/{category}/entries/{entry_id}")
async def update_entry(
    category: str,
    entry_id: str,
    patch: Dict[str, Any] = Body(...),
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """
    Patch one entry. An unknown id changes nothing and returns `entry: null`.
    """
    expense_category = parse_category(category)
    ledger = await _session_ledger(service, session)
    entry = await service.update_entry(session.email, expense_category, entry_id, patch)
    return {
        "entry": entry.to_dict() if entry else None,
        "summary": summarize_ledger(ledger).to_dict(),
        "saveConflict": service.has_save_conflict(session.email),
    }


@router.delete("/{category}/entries/{entry_id}")
async def remove_entry(
    category: str,
    entry_id: str,
    session: CustomerSession = Depends(get_customer_session),
    service: LedgerService = Depends(get_ledger_service)
):
    """Remove an entry. Removing a missing id is not an error."""
    expense_category = parse_category(category)
    ledger = await _session_ledger(service, session)
    removed = await service.remove_entry(session.email, expense_category, entry_id)
    return {
        "removed": removed,
        "summary": summarize_ledger(ledger).to_dict(),
        "saveConflict": service.has_save_conflict(session.email),
    }
