import datetime as dt
from typing import Dict, Optional
from pydantic import Field
from leadify.models.base import MongoBaseModel, utc_now
from leadify.models.bant import BANTRecord, BantField
from leadify.models.scoring_config import Tier


class LeadRecord(MongoBaseModel):
    """
    The finalized lead handed to the CRM once a conversation qualifies
    (or the user opts out of the remaining questions).
    """
    conversation_id: str
    agent_id: str
    user_id: str
    source: str = "api"

    bant: BANTRecord
    score: int
    tier: Tier
    score_breakdown: Dict[BantField, int] = Field(default_factory=dict)

    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None

    opted_out: bool = False
    qualification_round: int = 0
    finalized_at: dt.datetime = Field(default_factory=utc_now)
