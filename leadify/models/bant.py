"""
BANT domain types.

A BANTRecord accumulates over a conversation. Each extraction produces a
PartialBantUpdate which is merged in with `BANTRecord.apply`; a populated
field is only replaced when the update explicitly supersedes it.
"""
from decimal import Decimal
from enum import StrEnum
from typing import List, Optional, Set
from pydantic import BaseModel, Field, field_serializer


class BantField(StrEnum):
    BUDGET = "budget"
    AUTHORITY = "authority"
    NEED = "need"
    TIMELINE = "timeline"
    CONTACT = "contact"


# Questionnaire order
BANT_FIELD_ORDER: List[BantField] = [
    BantField.BUDGET,
    BantField.AUTHORITY,
    BantField.NEED,
    BantField.TIMELINE,
    BantField.CONTACT,
]


class AuthorityLevel(StrEnum):
    SOLE = "sole"
    JOINT = "joint"
    GROUP = "group"


class DurationUnit(StrEnum):
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    YEARS = "years"


DAYS_PER_UNIT = {
    DurationUnit.DAYS: 1,
    DurationUnit.WEEKS: 7,
    DurationUnit.MONTHS: 30,
    DurationUnit.YEARS: 365,
}


class ContactCompleteness(StrEnum):
    FULL = "full_contact"
    PARTIAL = "partial"
    NAME_ONLY = "name_only"
    NONE = "none"


class Money(BaseModel):
    amount: Decimal = Field(..., ge=0)
    currency: str = "PHP"
    raw: Optional[str] = None

    @field_serializer("amount")
    def serialize_amount(self, value: Decimal) -> str:
        # BSON has no native Decimal; strings round-trip through validation
        return str(value)

    def __str__(self) -> str:
        return f"{self.currency} {self.amount:,.2f}"


class Duration(BaseModel):
    amount: float = Field(..., ge=0)
    unit: DurationUnit
    raw: Optional[str] = None

    @property
    def days(self) -> float:
        return self.amount * DAYS_PER_UNIT[self.unit]

    def __str__(self) -> str:
        amount = int(self.amount) if float(self.amount).is_integer() else self.amount
        return f"{amount} {self.unit.value}"


class PartialBantUpdate(BaseModel):
    """Typed result of one extraction. Every field is optional."""
    budget: Optional[Money] = None
    authority: Optional[AuthorityLevel] = None
    need: Optional[str] = None
    timeline: Optional[Duration] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone_e164: Optional[str] = None

    supersedes: Set[BantField] = Field(default_factory=set)
    ambiguous: Set[BantField] = Field(default_factory=set)
    opted_out: bool = False

    def fields_present(self) -> Set[BantField]:
        present = set()
        if self.budget is not None:
            present.add(BantField.BUDGET)
        if self.authority is not None:
            present.add(BantField.AUTHORITY)
        if self.need:
            present.add(BantField.NEED)
        if self.timeline is not None:
            present.add(BantField.TIMELINE)
        if self.contact_name or self.contact_phone or self.contact_email:
            present.add(BantField.CONTACT)
        return present

    @property
    def is_empty(self) -> bool:
        return not self.fields_present() and not self.opted_out


class BANTRecord(BaseModel):
    budget: Optional[Money] = None
    authority: Optional[AuthorityLevel] = None
    need: Optional[str] = None
    timeline: Optional[Duration] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone_e164: Optional[str] = None

    @property
    def contact_completeness(self) -> ContactCompleteness:
        reachable = [v for v in (self.contact_phone, self.contact_email) if v]
        if self.contact_name and len(reachable) == 2:
            return ContactCompleteness.FULL
        if self.contact_name and reachable:
            return ContactCompleteness.PARTIAL
        if self.contact_name:
            return ContactCompleteness.NAME_ONLY
        return ContactCompleteness.NONE

    def is_populated(self, bant_field: BantField) -> bool:
        """Contact counts as populated once we have a name and a way to reach them."""
        if bant_field == BantField.CONTACT:
            return self.contact_completeness in (ContactCompleteness.FULL, ContactCompleteness.PARTIAL)
        return getattr(self, bant_field.value) not in (None, "")

    def missing_fields(self, required: List[BantField]) -> List[BantField]:
        return [f for f in BANT_FIELD_ORDER if f in required and not self.is_populated(f)]

    def apply(self, update: PartialBantUpdate) -> List[str]:
        """
        Merge an extraction into this record in place.

        Returns the names of attributes that changed. Nothing is ever cleared:
        a None in the update leaves the current value alone.
        """
        changed: List[str] = []

        def _write(attr: str, value, owner: BantField) -> None:
            if value is None or value == "":
                return
            current = getattr(self, attr)
            if current is None or owner in update.supersedes:
                if current != value:
                    setattr(self, attr, value)
                    changed.append(attr)

        _write("budget", update.budget, BantField.BUDGET)
        _write("authority", update.authority, BantField.AUTHORITY)
        _write("need", update.need, BantField.NEED)
        _write("timeline", update.timeline, BantField.TIMELINE)
        _write("contact_name", update.contact_name, BantField.CONTACT)
        _write("contact_phone", update.contact_phone, BantField.CONTACT)
        _write("contact_email", update.contact_email, BantField.CONTACT)
        _write("contact_phone_e164", update.contact_phone_e164, BantField.CONTACT)
        return changed

    def snapshot(self) -> dict:
        """Flat, display-friendly view used in API responses and lead records."""
        return {
            "budget": str(self.budget) if self.budget else None,
            "authority": self.authority.value if self.authority else None,
            "need": self.need,
            "timeline": str(self.timeline) if self.timeline else None,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
        }
