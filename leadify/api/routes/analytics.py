"""
Token Analytics Endpoints

Read-only views over the token ledger for the admin dashboards.
"""
import datetime as dt
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from leadify.api.dependencies import get_ledger
from leadify.models.token_usage import GroupBy, OperationType, UsageFilter, UsageSummary
from leadify.services.token_ledger import TokenLedger

router = APIRouter(prefix="/analytics", tags=["Analytics"])


def usage_filter(
    start: Optional[dt.datetime] = Query(None, description="Inclusive window start (ISO 8601)"),
    end: Optional[dt.datetime] = Query(None, description="Exclusive window end (ISO 8601)"),
    operation_type: Optional[OperationType] = None,
    model: Optional[str] = None,
    agent_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    conversation_id: Optional[str] = None,
) -> UsageFilter:
    return UsageFilter(
        start=start,
        end=end,
        operation_type=operation_type,
        model=model,
        agent_id=agent_id,
        organization_id=organization_id,
        conversation_id=conversation_id,
    )


@router.get("/tokens")
async def token_usage(
    group_by: GroupBy = GroupBy.OPERATION_TYPE,
    filters: UsageFilter = Depends(usage_filter),
    ledger: TokenLedger = Depends(get_ledger),
):
    """Total tokens and call counts per group over the requested window."""
    try:
        groups = await ledger.aggregate(filters, group_by)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return {
        "group_by": group_by.value,
        "total_tokens": sum(g.total_tokens for g in groups),
        "groups": [g.model_dump() for g in groups],
    }


@router.get("/tokens/summary", response_model=UsageSummary)
async def token_summary(
    filters: UsageFilter = Depends(usage_filter),
    ledger: TokenLedger = Depends(get_ledger),
):
    try:
        return await ledger.summary(filters)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
