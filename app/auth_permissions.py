"""
Customer Session & Access Check

Resolves the bearer token on a request into an explicit CustomerSession that
route handlers receive as a dependency. The token's email claim identifies the
customer; the customers table confirms the email belongs to a paying customer.
"""

import uuid
import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.supabase_client import get_supabase, verify_supabase_token, get_customer_by_email

logger = logging.getLogger(__name__)


# =============================================================================
# SESSION
# =============================================================================

class CustomerSession:
    """
    Identity of the customer behind a request.
    Passed explicitly to every handler that touches customer data.
    """
    def __init__(
        self,
        email: str,
        customer_id: Optional[str] = None,
        plan_type: Optional[str] = None,
        customer: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None
    ):
        self.email = email
        self.customer_id = customer_id
        self.plan_type = plan_type
        self.customer = customer or {}
        self.request_id = request_id or str(uuid.uuid4())[:8]

    def to_log_context(self) -> Dict[str, Any]:
        """Return context suitable for logging"""
        return {
            "email": self.email,
            "customer_id": self.customer_id,
            "plan_type": self.plan_type,
            "request_id": self.request_id,
        }


# =============================================================================
# AUTHENTICATION
# =============================================================================

security = HTTPBearer(auto_error=False)


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials:
        return credentials.credentials
    # Try Authorization header directly
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


async def get_customer_session(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> CustomerSession:
    """
    Primary auth dependency for customer endpoints.

    401 when the token is missing or unreadable, 503 when the record store is
    not configured, 403 when the email is not a known customer.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())[:8]

    token = _extract_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    user = verify_supabase_token(token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    if not get_supabase():
        raise HTTPException(status_code=503, detail="Record store unavailable")

    email = user["email"].strip().lower()
    customer = get_customer_by_email(email)
    if not customer:
        logger.warning(f"[Auth] {request_id}: no customer record for {email}")
        raise HTTPException(status_code=403, detail="No customer account for this email")

    return CustomerSession(
        email=email,
        customer_id=customer.get("id"),
        plan_type=customer.get("plan_type"),
        customer=customer,
        request_id=request_id
    )
