"""
System Routes - Health

Public health check reporting record store and document service availability.
"""

import os
import logging
from typing import Dict
from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from app.supabase_client import get_supabase
from app.document_service import DocumentServiceClient
from app.settings_loader import get_federal_credit_rate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/system", tags=["system"])


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    environment: str
    services: Dict[str, str]
    federal_credit_rate: float


# =============================================================================
# HEALTH CHECK (PUBLIC)
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.
    Public - no auth required.
    """
    services = {}

    # Check Supabase connection
    try:
        supabase = get_supabase()
        if supabase:
            supabase.table("customers").select("id").limit(1).execute()
            services["database"] = "healthy"
        else:
            services["database"] = "unavailable"
    except Exception as e:
        services["database"] = f"error: {str(e)[:50]}"

    services["document_service"] = "configured" if DocumentServiceClient().configured else "unavailable"

    environment = os.getenv("ENVIRONMENT", "development")

    # Only the record store decides overall health
    status = "healthy" if services["database"] == "healthy" else "degraded"

    return HealthResponse(
        status=status,
        timestamp=datetime.utcnow().isoformat(),
        version="1.0.0",
        environment=environment,
        services=services,
        federal_credit_rate=get_federal_credit_rate()
    )
