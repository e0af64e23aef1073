"""
Token accounting types.

A TokenUsageRecord is immutable once built; the ledger only ever appends.
"""
import datetime as dt
import uuid
from enum import StrEnum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from leadify.models.base import utc_now


class OperationType(StrEnum):
    INTENT_CLASSIFICATION = "intent_classification"
    BANT_EXTRACTION = "bant_extraction"
    CONTACT_EXTRACTION = "contact_extraction"
    PROPERTY_EXTRACTION = "property_extraction"
    PAYMENT_EXTRACTION = "payment_extraction"
    SEMANTIC_SEARCH = "semantic_search"
    CHAT_REPLY = "chat_reply"
    BANT_NORMALIZATION = "bant_normalization"
    EMBEDDING = "embedding"
    HANDOFF = "handoff"
    OTHER = "other"


class GroupBy(StrEnum):
    OPERATION_TYPE = "operation_type"
    MODEL = "model"
    AGENT = "agent_id"
    ORGANIZATION = "organization_id"
    HOUR = "hour"
    DAY = "day"


class UsageReport(BaseModel):
    """Token usage for one model invocation, as reported or estimated."""
    model_config = ConfigDict(frozen=True)

    model: str
    prompt_tokens: int = Field(0, ge=0)
    completion_tokens: int = Field(0, ge=0)
    total_tokens: int = Field(0, ge=0)
    estimated: bool = False

    @model_validator(mode="before")
    @classmethod
    def derive_total(cls, data):
        if isinstance(data, dict):
            prompt = data.get("prompt_tokens") or 0
            completion = data.get("completion_tokens") or 0
            data = {**data, "total_tokens": prompt + completion}
        return data


class TokenUsageRecord(BaseModel):
    """Append-only ledger entry. One per gateway invocation, success or failure."""
    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: dt.datetime = Field(default_factory=utc_now)
    operation_type: OperationType
    model: str
    prompt_tokens: int = Field(0, ge=0)
    completion_tokens: int = Field(0, ge=0)
    total_tokens: int = Field(0, ge=0)
    estimated: bool = False

    conversation_id: Optional[str] = None
    agent_id: Optional[str] = None

    success: bool = True
    error_message: Optional[str] = None
    response_time_ms: Optional[float] = None
    cost_usd: float = 0.0

    @model_validator(mode="after")
    def check_total(self) -> "TokenUsageRecord":
        if self.total_tokens != self.prompt_tokens + self.completion_tokens:
            raise ValueError("total_tokens must equal prompt_tokens + completion_tokens")
        return self


class UsageFilter(BaseModel):
    """Half-open time window [start, end) plus optional equality filters."""
    start: Optional[dt.datetime] = None
    end: Optional[dt.datetime] = None
    operation_type: Optional[OperationType] = None
    model: Optional[str] = None
    agent_id: Optional[str] = None
    organization_id: Optional[str] = None
    conversation_id: Optional[str] = None


class UsageAggregate(BaseModel):
    group: Optional[str]
    total_tokens: int
    count: int


class UsageSummary(BaseModel):
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    calls: int = 0
    failed_calls: int = 0
    estimated_calls: int = 0
    cost_usd: float = 0.0
