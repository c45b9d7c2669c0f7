"""
Document Service Client

Talks to the external document-generation service:

    POST {base}/generate          {"email": ...}  -> {"trackingId": ...}
    GET  {base}/status/{tracking}                 -> {progress, currentStep,
                                                      estimatedTimeRemaining, status}

Configured with DOCUMENT_SERVICE_URL, DOCUMENT_SERVICE_TOKEN and
DOCUMENT_SERVICE_TIMEOUT_SECONDS.
"""

import os
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from app.jobs.job_types import DocumentStatus

logger = logging.getLogger(__name__)


class DocumentServiceError(Exception):
    """The document service could not be reached or answered with an error."""

    def __init__(self, message: str, status_code: Optional[int] = None, transient: bool = True):
        self.status_code = status_code
        self.transient = transient
        super().__init__(message)


class DocumentServiceClient:
    """
    Thin async client for the document service.

    Args:
        base_url: Service root. Defaults to DOCUMENT_SERVICE_URL.
        token: Bearer token sent with every call. Defaults to DOCUMENT_SERVICE_TOKEN.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or os.environ.get("DOCUMENT_SERVICE_URL") or "").rstrip("/")
        self.token = token if token is not None else os.environ.get("DOCUMENT_SERVICE_TOKEN")
        self.timeout = timeout or float(os.environ.get("DOCUMENT_SERVICE_TIMEOUT_SECONDS", "30"))
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.configured:
            raise DocumentServiceError("Document service not configured", transient=False)

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(method, url, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            logger.warning(f"[DocumentService] {method} {url} failed: {e}")
            raise DocumentServiceError(f"Document service unreachable: {e}") from e

        if resp.status_code >= 400:
            # 5xx may clear up on a retry, 4xx will not
            transient = resp.status_code >= 500
            logger.warning(f"[DocumentService] {method} {url} -> {resp.status_code}: {resp.text[:200]}")
            raise DocumentServiceError(
                f"Document service returned {resp.status_code}",
                status_code=resp.status_code,
                transient=transient,
            )

        try:
            return resp.json()
        except ValueError as e:
            raise DocumentServiceError("Document service returned invalid JSON") from e

    async def request_generation(self, email: str) -> str:
        """Start document generation for a customer. Returns the tracking id."""
        body = await self._request("POST", "/generate", {"email": email})
        tracking_id = body.get("trackingId") if isinstance(body, dict) else None
        if not tracking_id:
            raise DocumentServiceError("Document service returned no tracking id", transient=False)
        logger.info(f"[DocumentService] Generation started for {email}: {tracking_id}")
        return str(tracking_id)

    async def fetch_status(self, tracking_id: str) -> DocumentStatus:
        """One status reading for a tracking id."""
        body = await self._request("GET", f"/status/{tracking_id}")
        try:
            return DocumentStatus(**body)
        except (TypeError, ValidationError) as e:
            raise DocumentServiceError(f"Malformed status for {tracking_id}: {e}") from e
