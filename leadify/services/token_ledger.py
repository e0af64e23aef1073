"""
Token Ledger

Durable, append-only accounting of every model invocation, with the
aggregation queries the analytics dashboards need.

Storage is pluggable (`TokenUsageStore`): an in-memory store for tests and
single-process deployments, and a MongoDB store in
`leadify.repositories.token_usage`. Organization-level grouping is resolved
through the agent directory at query time, since records only carry agent_id.
"""
import asyncio
import datetime as dt
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional, Protocol
from loguru import logger
from leadify.models.token_usage import (
    GroupBy,
    OperationType,
    TokenUsageRecord,
    UsageAggregate,
    UsageFilter,
    UsageReport,
    UsageSummary,
)
from leadify.utils.cost_tracker import calculate_cost

HOUR_BUCKET_FORMAT = "%Y-%m-%dT%H:00:00"
DAY_BUCKET_FORMAT = "%Y-%m-%d"


class LedgerWriteFailure(Exception):
    """Ledger storage was unavailable; the record needs reconciliation."""

    def __init__(self, message: str, record: TokenUsageRecord | None = None):
        super().__init__(message)
        self.record = record


class AgentDirectory(Protocol):
    """External join from agents to their owning organization."""

    async def organization_for(self, agent_id: str) -> Optional[str]:
        ...

    async def agents_for_organization(self, organization_id: str) -> List[str]:
        ...


class TokenUsageStore(ABC):
    """
    Storage backend for ledger records.

    `insert` must be safe under concurrent writers and idempotent on
    `record_id`: writing the same record twice keeps a single entry.
    `agent_ids`, when given, restricts queries to those agents.
    """

    @abstractmethod
    async def insert(self, record: TokenUsageRecord) -> str:
        pass

    @abstractmethod
    async def aggregate(
        self,
        usage_filter: UsageFilter,
        group_by: GroupBy,
        agent_ids: Optional[List[str]] = None
    ) -> List[UsageAggregate]:
        pass

    @abstractmethod
    async def summarize(
        self,
        usage_filter: UsageFilter,
        agent_ids: Optional[List[str]] = None
    ) -> UsageSummary:
        pass

    @abstractmethod
    async def find(
        self,
        usage_filter: UsageFilter,
        agent_ids: Optional[List[str]] = None,
        limit: int = 100
    ) -> List[TokenUsageRecord]:
        pass


def bucket_key(record: TokenUsageRecord, group_by: GroupBy) -> Optional[str]:
    if group_by == GroupBy.HOUR:
        return record.created_at.astimezone(dt.UTC).strftime(HOUR_BUCKET_FORMAT)
    if group_by == GroupBy.DAY:
        return record.created_at.astimezone(dt.UTC).strftime(DAY_BUCKET_FORMAT)
    if group_by == GroupBy.ORGANIZATION:
        raise ValueError("organization grouping is resolved by the ledger, not the store")
    value = getattr(record, group_by.value)
    return value.value if isinstance(value, OperationType) else value


def sort_aggregates(rows: List[UsageAggregate]) -> List[UsageAggregate]:
    return sorted(rows, key=lambda r: (r.group is None, r.group or ""))


class InMemoryTokenUsageStore(TokenUsageStore):
    """
    Append-only in-process store.
    An asyncio lock serializes writers so concurrent appends never collide.
    """

    def __init__(self):
        self._records: List[TokenUsageRecord] = []
        self._ids: set[str] = set()
        self._lock = asyncio.Lock()

    async def insert(self, record: TokenUsageRecord) -> str:
        async with self._lock:
            if record.record_id in self._ids:
                logger.debug(f"Ledger record {record.record_id} already stored")
                return record.record_id
            self._records.append(record)
            self._ids.add(record.record_id)
        return record.record_id

    def _matching(
        self,
        usage_filter: UsageFilter,
        agent_ids: Optional[List[str]]
    ) -> List[TokenUsageRecord]:
        # Snapshot; the list is append-only so a copy is consistent
        records = list(self._records)
        result = []
        for r in records:
            if usage_filter.start and r.created_at < usage_filter.start:
                continue
            if usage_filter.end and r.created_at >= usage_filter.end:
                continue
            if usage_filter.operation_type and r.operation_type != usage_filter.operation_type:
                continue
            if usage_filter.model and r.model != usage_filter.model:
                continue
            if usage_filter.agent_id and r.agent_id != usage_filter.agent_id:
                continue
            if usage_filter.conversation_id and r.conversation_id != usage_filter.conversation_id:
                continue
            if agent_ids is not None and r.agent_id not in agent_ids:
                continue
            result.append(r)
        return result

    async def aggregate(
        self,
        usage_filter: UsageFilter,
        group_by: GroupBy,
        agent_ids: Optional[List[str]] = None
    ) -> List[UsageAggregate]:
        totals: Dict[Optional[str], list[int]] = defaultdict(lambda: [0, 0])
        for record in self._matching(usage_filter, agent_ids):
            bucket = totals[bucket_key(record, group_by)]
            bucket[0] += record.total_tokens
            bucket[1] += 1
        return sort_aggregates([
            UsageAggregate(group=group, total_tokens=tokens, count=count)
            for group, (tokens, count) in totals.items()
        ])

    async def summarize(
        self,
        usage_filter: UsageFilter,
        agent_ids: Optional[List[str]] = None
    ) -> UsageSummary:
        summary = UsageSummary()
        for r in self._matching(usage_filter, agent_ids):
            summary.total_tokens += r.total_tokens
            summary.prompt_tokens += r.prompt_tokens
            summary.completion_tokens += r.completion_tokens
            summary.calls += 1
            summary.failed_calls += 0 if r.success else 1
            summary.estimated_calls += 1 if r.estimated else 0
            summary.cost_usd += r.cost_usd
        summary.cost_usd = round(summary.cost_usd, 6)
        return summary

    async def find(
        self,
        usage_filter: UsageFilter,
        agent_ids: Optional[List[str]] = None,
        limit: int = 100
    ) -> List[TokenUsageRecord]:
        matching = self._matching(usage_filter, agent_ids)
        return sorted(matching, key=lambda r: r.created_at, reverse=True)[:limit]


class TokenLedger:
    """
    Append-only ledger over a TokenUsageStore.

    Usage:
        >>> ledger = TokenLedger()
        >>> record_id = await ledger.record(usage, OperationType.CHAT_REPLY, conversation_id="c-1")
        >>> await ledger.aggregate(UsageFilter(), GroupBy.OPERATION_TYPE)
    """

    def __init__(
        self,
        store: TokenUsageStore | None = None,
        directory: AgentDirectory | None = None
    ):
        self.store = store or InMemoryTokenUsageStore()
        self.directory = directory

    async def append(self, record: TokenUsageRecord) -> str:
        """
        Persist a prebuilt record.

        Raises:
            LedgerWriteFailure: If the store could not accept the write
        """
        try:
            return await self.store.insert(record)
        except LedgerWriteFailure:
            raise
        except Exception as e:
            raise LedgerWriteFailure(f"Could not store ledger record {record.record_id}: {e}", record) from e

    async def record(
        self,
        usage: UsageReport,
        operation_type: OperationType,
        conversation_id: str | None = None,
        agent_id: str | None = None,
        *,
        success: bool = True,
        error_message: str | None = None,
        response_time_ms: float | None = None,
        record_id: str | None = None
    ) -> str:
        """Build a record from a usage report and append it. Returns the record id."""
        fields = dict(
            operation_type=operation_type,
            model=usage.model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
            estimated=usage.estimated,
            conversation_id=conversation_id,
            agent_id=agent_id,
            success=success,
            error_message=error_message,
            response_time_ms=response_time_ms,
            cost_usd=calculate_cost(usage.model, usage.prompt_tokens, usage.completion_tokens),
        )
        if record_id:
            fields["record_id"] = record_id
        return await self.append(TokenUsageRecord(**fields))

    async def _agent_scope(self, usage_filter: UsageFilter) -> Optional[List[str]]:
        if not usage_filter.organization_id:
            return None
        if self.directory is None:
            raise ValueError("Filtering by organization requires an agent directory")
        return await self.directory.agents_for_organization(usage_filter.organization_id)

    async def aggregate(
        self,
        usage_filter: UsageFilter | None = None,
        group_by: GroupBy = GroupBy.OPERATION_TYPE
    ) -> List[UsageAggregate]:
        """
        Sum total_tokens and count records per group.

        Every matching record lands in exactly one group, so the grand total of
        any aggregation equals the sum over the individual records.
        """
        usage_filter = usage_filter or UsageFilter()
        agent_ids = await self._agent_scope(usage_filter)

        if group_by != GroupBy.ORGANIZATION:
            return await self.store.aggregate(usage_filter, group_by, agent_ids)

        if self.directory is None:
            raise ValueError("Grouping by organization requires an agent directory")

        per_agent = await self.store.aggregate(usage_filter, GroupBy.AGENT, agent_ids)
        totals: Dict[Optional[str], list[int]] = defaultdict(lambda: [0, 0])
        for row in per_agent:
            organization = await self.directory.organization_for(row.group) if row.group else None
            totals[organization][0] += row.total_tokens
            totals[organization][1] += row.count
        return sort_aggregates([
            UsageAggregate(group=group, total_tokens=tokens, count=count)
            for group, (tokens, count) in totals.items()
        ])

    async def summary(self, usage_filter: UsageFilter | None = None) -> UsageSummary:
        usage_filter = usage_filter or UsageFilter()
        return await self.store.summarize(usage_filter, await self._agent_scope(usage_filter))

    async def records(self, usage_filter: UsageFilter | None = None, limit: int = 100) -> List[TokenUsageRecord]:
        usage_filter = usage_filter or UsageFilter()
        return await self.store.find(usage_filter, await self._agent_scope(usage_filter), limit)


_ledger: Optional[TokenLedger] = None


def get_token_ledger() -> TokenLedger:
    """Get or create the process-wide ledger (in-memory unless configured otherwise)."""
    global _ledger
    if _ledger is None:
        _ledger = TokenLedger()
    return _ledger


def set_token_ledger(ledger: TokenLedger) -> None:
    global _ledger
    _ledger = ledger
