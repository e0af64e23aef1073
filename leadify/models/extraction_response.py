from typing import List, Optional
from pydantic import BaseModel, Field
from leadify.models.bant import BantField, DurationUnit


class RawBantExtraction(BaseModel):
    """
    What the extraction model reports, verbatim from the message.
    Canonical values are produced afterwards by the deterministic normalizer.
    """
    budget_text: Optional[str] = Field(None, description="Budget phrase exactly as written, e.g. '15 million pesos'.")
    authority_text: Optional[str] = Field(None, description="Who decides, as written, e.g. 'me and my wife'.")
    need_text: Optional[str] = Field(None, description="Purpose of the purchase, e.g. 'for residency', 'investment'.")
    timeline_text: Optional[str] = Field(None, description="When they plan to act, e.g. 'within 3 months'.")
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None

    revised_fields: List[BantField] = Field(
        default_factory=list,
        description="Fields the user explicitly corrected in this message ('actually my budget is ...')."
    )
    opted_out: bool = Field(False, description="User declined to continue the qualification.")


class NormalizedBantValue(BaseModel):
    """Output contract for the normalization fallback call."""
    amount: Optional[float] = Field(None, description="Numeric amount with multipliers applied (25 million -> 25000000).")
    currency: Optional[str] = Field(None, description="ISO 4217 code, e.g. PHP, USD.")
    duration_unit: Optional[DurationUnit] = None
    parseable: bool = True
