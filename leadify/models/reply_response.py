from pydantic import BaseModel, Field


class ReplyResponse(BaseModel):
    """
    The responder output contract.
    Standardized for observability.
    """
    content: str = Field(..., description="1-3 sentences sent to the user. Warm, concise, one question at most.")
    asked_field: str | None = Field(
        None, description="Which BANT detail the reply asks for, if any (budget, authority, need, timeline, contact)."
    )
    reasoning: str = Field("", max_length=300)
