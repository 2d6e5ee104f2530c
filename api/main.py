"""
Partner Commissions API - Main Application.

FastAPI application exposing the payment webhook, checkout verification and
admin commission endpoints.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from config.settings import get_settings

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create FastAPI application
app = FastAPI(
    title="Partner Commissions API",
    description="Payment ingestion and partner commission ledger management",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# TODO: Restrict origins to the admin portal domain before production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
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
        "service": "partner-commissions-api"
    }


@app.get("/", tags=["Root"])
def root():
    """
    Root endpoint with API information.
    """
    return {
        "message": "Partner Commissions API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import commissions, organizations, payments, webhooks

app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])
app.include_router(payments.router, prefix="/api/v1", tags=["Payments"])
app.include_router(commissions.router, prefix="/api/v1", tags=["Commissions"])
app.include_router(organizations.router, prefix="/api/v1", tags=["Organizations"])
