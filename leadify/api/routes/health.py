"""
Health and Readiness Endpoints

Kubernetes-compatible health probes for load balancers and orchestration.
"""
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from leadify.config import get_settings
from leadify.repositories import db_manager

router = APIRouter(tags=["Health"])

# API version - single source of truth
API_VERSION = "0.4.0"


@router.get("/health")
async def health_check():
    """Liveness: 200 whenever the process is serving requests."""
    return {
        "status": "healthy",
        "service": "leadify",
        "version": API_VERSION
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness probe. Verifies the engine is built and, with the MongoDB
    backend, that the database answers a ping. 503 otherwise.
    """
    if getattr(request.app.state, "engine", None) is None:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "Conversation engine not initialized"}
        )

    backend = get_settings().persistence_backend
    if backend == "mongodb" and not await db_manager.ping():
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "MongoDB unreachable"}
        )

    return {
        "status": "ready",
        "persistence": backend,
        "engine": "initialized"
    }


@router.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Leadify API",
        "version": API_VERSION,
        "endpoints": {
            "chat": "/chat (POST)",
            "conversation": "/conversations/{id}",
            "token_analytics": "/analytics/tokens",
            "health": "/health",
            "ready": "/ready",
            "metrics": "/metrics",
        }
    }
