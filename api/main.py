"""
Domain Renewals Admin API - Main Application.

FastAPI application exposing the renewal ledger to support staff: browse
attempts, review captured-but-unfulfilled renewals and record their resolution.
"""

from fastapi import FastAPI

from api import __version__
from api.routers import renewals

# Create FastAPI application
app = FastAPI(
    title="Domain Renewals Admin API",
    description="Inspect automatic domain renewals and resolve reconciliation cases",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "domain-renewals-api"
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Domain Renewals Admin API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


app.include_router(renewals.router, prefix="/api/v1", tags=["Renewals"])
