"""
Company Routes
Load and submit the signed-in customer's company information.

The company row is what the review screen, the credits screen and document
generation read; it is keyed by customer id.
"""

import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from app.auth_permissions import CustomerSession, get_customer_session
from app.schemas import CompanyInfoRequest
from app.supabase_client import get_supabase, get_company_by_customer_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/company", tags=["company"])

COMPANIES_TABLE = "companies"


def split_states(value: Any) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [s.strip() for s in value.split(",") if s.strip()]
    return []


def company_to_info(company: Dict[str, Any]) -> Dict[str, Any]:
    """Company row in the camelCase shape the forms use."""
    return {
        "companyName": company.get("company_name") or "",
        "ein": company.get("ein") or "",
        "entityType": company.get("entity_type") or "",
        "yearFounded": company.get("year_founded") or "",
        "annualRevenue": company.get("revenue") or "",
        "employeeCount": company.get("employee_count") or "",
        "rdEmployeeCount": company.get("rd_employee_count") or "",
        "primaryState": company.get("primary_state") or "",
        "rdStates": split_states(company.get("rd_states")),
        "hasMultipleStates": bool(company.get("has_multiple_states")),
    }


def info_to_row(info: CompanyInfoRequest) -> Dict[str, Any]:
    return {
        "company_name": info.companyName,
        "ein": info.ein,
        "entity_type": info.entityType,
        "revenue": info.annualRevenue,
        "employee_count": info.employeeCount,
        "rd_employee_count": info.rdEmployeeCount,
        "year_founded": info.yearFounded,
        "primary_state": info.primaryState,
        "rd_states": ",".join(info.rdStates),
        "has_multiple_states": info.hasMultipleStates or len(info.rdStates) > 1,
        "business_description": info.businessDescription,
        "rd_activities": info.rdActivities,
    }


@router.post("/info")
async def load_company_info(session: CustomerSession = Depends(get_customer_session)):
    """Existing company info, or null when the customer has not submitted any."""
    company = get_company_by_customer_id(session.customer_id)
    return {"companyInfo": company_to_info(company) if company else None}


@router.post("/submit")
async def submit_company_info(
    request: CompanyInfoRequest,
    session: CustomerSession = Depends(get_customer_session)
):
    """Create the customer's company row, or update it if one exists."""
    supabase = get_supabase()
    if not supabase:
        raise HTTPException(status_code=503, detail="Record store unavailable")

    row = {**info_to_row(request), "updated_at": datetime.utcnow().isoformat()}
    existing = get_company_by_customer_id(session.customer_id)

    try:
        if existing:
            supabase.table(COMPANIES_TABLE)\
                .update(row)\
                .eq("id", existing["id"])\
                .execute()
            company_id = existing["id"]
        else:
            result = supabase.table(COMPANIES_TABLE)\
                .insert({**row, "customer_id": session.customer_id})\
                .execute()
            company_id = result.data[0]["id"] if result.data else None
    except Exception as e:
        logger.error(f"Failed to save company info: {e} {session.to_log_context()}")
        raise HTTPException(status_code=500, detail="Failed to submit company information")

    logger.info(f"Company info {'updated' if existing else 'created'} for {session.email}")
    return {"success": True, "companyId": company_id, "created": not existing}
