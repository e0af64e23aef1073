"""
Metrics Endpoints

Prometheus-compatible metrics and cost statistics for observability.
"""
from fastapi import APIRouter
from fastapi.responses import Response

from leadify.utils.cost_tracker import get_cost_tracker
from leadify.utils.metrics import get_metrics

router = APIRouter(tags=["Metrics"])


@router.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint.

    Includes turn counts and latencies, stage transitions, finalized leads,
    gateway calls and errors, token usage and cost by operation type, and
    ledger write failures.

    Content-Type: text/plain; version=0.0.4; charset=utf-8
    """
    return Response(
        content=get_metrics().export(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )


@router.get("/metrics/costs")
async def cost_metrics():
    """Spend in the current hourly and daily windows against their limits."""
    return {
        "status": "ok",
        "costs": get_cost_tracker().get_summary()
    }
