from enum import StrEnum
from typing import Optional
from pydantic import BaseModel, Field


class Intent(StrEnum):
    QUALIFICATION = "qualification"
    ESTIMATION = "estimation"
    INFORMATIONAL = "informational"
    GREETING = "greeting"
    HANDOFF_REQUEST = "handoff_request"


class IntentClassification(BaseModel):
    """The formal output contract for the intent classification call."""
    intent: Intent
    confidence: float = Field(ge=0, le=1.0)
    secondary_intent: Optional[Intent] = Field(
        None, description="Second most likely intent when the message could be read two ways."
    )
    reasoning: str = Field(..., max_length=600)


class IntentDecision(BaseModel):
    """What the router settled on after deterministic overrides."""
    intent: Intent
    model_intent: Intent
    confidence: float = Field(ge=0, le=1.0)
    reasoning: str = ""
    sticky_applied: bool = False
    handoff_keyword: bool = False
