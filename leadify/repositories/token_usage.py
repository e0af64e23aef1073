"""
Token Usage Repository
MongoDB-backed TokenUsageStore for the ledger.
"""
from typing import Any, Dict, List, Optional
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError

from .connection import TOKEN_USAGE
from ..models.token_usage import GroupBy, TokenUsageRecord, UsageAggregate, UsageFilter, UsageSummary
from ..services.token_ledger import (
    DAY_BUCKET_FORMAT,
    HOUR_BUCKET_FORMAT,
    TokenUsageStore,
    sort_aggregates,
)
from ..utils.observability import logger

# MongoDB $dateToString uses the same directives as strftime for these
_BUCKET_FORMATS = {
    GroupBy.HOUR: HOUR_BUCKET_FORMAT,
    GroupBy.DAY: DAY_BUCKET_FORMAT,
}


def build_match(usage_filter: UsageFilter, agent_ids: Optional[List[str]] = None) -> Dict[str, Any]:
    match: Dict[str, Any] = {}

    window: Dict[str, Any] = {}
    if usage_filter.start:
        window["$gte"] = usage_filter.start
    if usage_filter.end:
        window["$lt"] = usage_filter.end
    if window:
        match["created_at"] = window

    if usage_filter.operation_type:
        match["operation_type"] = usage_filter.operation_type.value
    if usage_filter.model:
        match["model"] = usage_filter.model
    if usage_filter.conversation_id:
        match["conversation_id"] = usage_filter.conversation_id

    if agent_ids is not None:
        scoped = [a for a in agent_ids if not usage_filter.agent_id or a == usage_filter.agent_id]
        match["agent_id"] = {"$in": scoped}
    elif usage_filter.agent_id:
        match["agent_id"] = usage_filter.agent_id

    return match


def group_expression(group_by: GroupBy) -> Any:
    if group_by in _BUCKET_FORMATS:
        return {
            "$dateToString": {
                "format": _BUCKET_FORMATS[group_by],
                "date": "$created_at",
                "timezone": "UTC",
            }
        }
    if group_by == GroupBy.ORGANIZATION:
        raise ValueError("organization grouping is resolved by the ledger, not the store")
    return f"${group_by.value}"


class TokenUsageRepository(TokenUsageStore):
    """
    Append-only collection; `record_id` carries a unique index so a retried
    insert of the same record is a no-op.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        self.collection: AsyncIOMotorCollection = database[TOKEN_USAGE]

    async def insert(self, record: TokenUsageRecord) -> str:
        try:
            await self.collection.insert_one(record.model_dump())
        except DuplicateKeyError:
            logger.debug(f"Ledger record {record.record_id} already stored")
        return record.record_id

    async def aggregate(
        self,
        usage_filter: UsageFilter,
        group_by: GroupBy,
        agent_ids: Optional[List[str]] = None
    ) -> List[UsageAggregate]:
        pipeline = [
            {"$match": build_match(usage_filter, agent_ids)},
            {"$group": {
                "_id": group_expression(group_by),
                "total_tokens": {"$sum": "$total_tokens"},
                "count": {"$sum": 1},
            }},
        ]
        rows = await self.collection.aggregate(pipeline).to_list(length=None)
        return sort_aggregates([
            UsageAggregate(group=row["_id"], total_tokens=row["total_tokens"], count=row["count"])
            for row in rows
        ])

    async def summarize(
        self,
        usage_filter: UsageFilter,
        agent_ids: Optional[List[str]] = None
    ) -> UsageSummary:
        pipeline = [
            {"$match": build_match(usage_filter, agent_ids)},
            {"$group": {
                "_id": None,
                "total_tokens": {"$sum": "$total_tokens"},
                "prompt_tokens": {"$sum": "$prompt_tokens"},
                "completion_tokens": {"$sum": "$completion_tokens"},
                "calls": {"$sum": 1},
                "failed_calls": {"$sum": {"$cond": ["$success", 0, 1]}},
                "estimated_calls": {"$sum": {"$cond": ["$estimated", 1, 0]}},
                "cost_usd": {"$sum": "$cost_usd"},
            }},
        ]
        rows = await self.collection.aggregate(pipeline).to_list(length=1)
        if not rows:
            return UsageSummary()
        row = rows[0]
        row.pop("_id", None)
        row["cost_usd"] = round(row["cost_usd"], 6)
        return UsageSummary(**row)

    async def find(
        self,
        usage_filter: UsageFilter,
        agent_ids: Optional[List[str]] = None,
        limit: int = 100
    ) -> List[TokenUsageRecord]:
        cursor = (
            self.collection.find(build_match(usage_filter, agent_ids), projection={"_id": 0})
            .sort("created_at", DESCENDING)
            .limit(limit)
        )
        docs = await cursor.to_list(length=limit)
        return [TokenUsageRecord.model_validate(doc) for doc in docs]
