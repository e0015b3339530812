"""
VIPER Erasure Ledger - FastAPI Application Entry Point

This is the main entry point for the FastAPI application.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import init_db, close_db
from app.services.audit_service import audit_recorder
from app.utils.error_handling import setup_exception_handlers, ErrorTrackingMiddleware
from app.utils.signing import get_certificate_signer

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Environment: {settings.app_env}")

    # Initialize database (dev only - use migrations in production)
    if settings.is_development:
        await init_db()
        logger.info("Database tables initialized")

    # Load the signing key up front so a bad key path fails startup
    signer = get_certificate_signer()
    logger.info(f"Certificate signer ready ({signer.algorithm})")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    await audit_recorder.drain()
    if audit_recorder.failures:
        logger.error(f"{len(audit_recorder.failures)} audit writes failed during this run")
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Erasure proof and compliance certificate ledger with signed certificates and an immutable audit trail",
    version="0.1.0",
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ErrorTrackingMiddleware)

setup_exception_handlers(app)


# ===========================================
# API ROUTES
# ===========================================

@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.app_name,
        "version": "0.1.0",
        "status": "running",
        "environment": settings.app_env,
        "api_docs": "/api/docs" if settings.is_development else "disabled",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "pending_audit_writes": audit_recorder.pending_count,
        "failed_audit_writes": len(audit_recorder.failures),
    }


@app.get("/api/v1")
async def api_root():
    """API v1 root endpoint."""
    return {
        "message": f"Welcome to {settings.app_name} API v1",
        "endpoints": {
            "proofs": "/api/v1/proofs",
            "certificates": "/api/v1/certificates",
            "verify": "/api/v1/verify/{code}",
            "audit": "/api/v1/audit",
        }
    }


# ===========================================
# INCLUDE ROUTERS
# ===========================================

from app.routers import proofs, certificates, verification, audit

app.include_router(proofs.router, prefix="/api/v1")
app.include_router(certificates.router, prefix="/api/v1")
app.include_router(verification.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=5120,
        reload=settings.is_development,
    )
