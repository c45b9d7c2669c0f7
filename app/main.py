from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import os
import logging
from datetime import datetime

from app.supabase_client import get_supabase
from app.settings_loader import get_federal_credit_rate
from app.ledger_service import get_ledger_service
from app.document_service import DocumentServiceClient
from app import (
    calculator_routes,
    credits_routes,
    expense_routes,
    qre_routes,
    review_routes,
    company_routes,
    system_routes,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="R&D Credit Expense API",
    description="Expense ledger, QRE totals, credit estimates and pricing for R&D tax credit filings",
    version="1.0.0"
)

# CORS configuration
# The frontend URL can be on Vercel, localhost, or any other domain
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

# Get additional allowed origins from environment
extra_origins = os.environ.get("CORS_ORIGINS", "")
if extra_origins:
    allowed_origins.extend([o.strip() for o in extra_origins.split(",") if o.strip()])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    port = os.environ.get("PORT", "8000")
    logger.info(f"🚀 R&D Credit Expense API starting on port {port}")
    logger.info(f"📊 Supabase connected: {get_supabase() is not None}")
    logger.info(f"📄 Document service: {'Configured' if DocumentServiceClient().configured else 'NOT CONFIGURED - set DOCUMENT_SERVICE_URL'}")
    logger.info(f"💵 Federal credit rate: {get_federal_credit_rate():.3f}")

@app.on_event("shutdown")
async def shutdown_event():
    """Write out any ledger edits still waiting for autosave."""
    saved = await get_ledger_service().flush_all()
    logger.info(f"Flushed {saved} session ledgers on shutdown")

# --- Routers ---
app.include_router(company_routes.router)
app.include_router(expense_routes.router)
app.include_router(qre_routes.router)
app.include_router(credits_routes.router)
app.include_router(calculator_routes.router)
app.include_router(review_routes.router)
app.include_router(system_routes.router)


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint for Railway and monitoring."""
    supabase = get_supabase()
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "services": {
            "database": "connected" if supabase else "not configured",
            "documents": "configured" if DocumentServiceClient().configured else "not configured"
        }
    }

@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "R&D Credit Expense API",
        "version": "1.0.0",
        "description": "Expense ledger, QRE and credit computation",
        "docs": "/docs",
        "health": "/health"
    }
