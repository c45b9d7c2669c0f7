"""
Job Utilities

Shared helpers for the document job poller and worker: duration formatting and
error payloads with user-facing hints.
"""

import logging
from typing import Any, Dict, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Format duration in human-readable form."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        mins = seconds / 60
        return f"{mins:.1f}m"
    hours = seconds / 3600
    return f"{hours:.1f}h"


def create_error_response(
    error_type: str,
    message: str,
    hint: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Create a standardized error response dictionary."""
    return {
        "error_type": error_type,
        "message": message,
        "hint": hint or get_default_hint(error_type),
        "details": details,
        "timestamp": datetime.utcnow().isoformat()
    }


def get_default_hint(error_type: str) -> str:
    """Get default user-friendly hint for an error type."""
    hints = {
        "validation_error": "Please check your input data and try again.",
        "not_found": "The requested resource could not be found.",
        "timeout": "Document generation is taking longer than expected. We'll email you when it's ready.",
        "connection_error": "Could not reach the document service. Please try again shortly.",
        "service_error": "The document service reported an error. Please try again or contact support.",
        "abandoned": "We stopped waiting for your documents. They may still arrive by email.",
    }
    return hints.get(error_type, "An error occurred. Please try again or contact support.")
