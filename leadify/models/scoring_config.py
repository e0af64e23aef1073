"""
Per-agent scoring configuration.

Sub-rule points are absolute and may never exceed their category weight.
Invalid configurations are rejected when loaded (`load_scoring_config`),
never discovered mid-conversation.
"""
from decimal import Decimal
from enum import StrEnum
from typing import Any, Dict, List, Mapping
from pydantic import BaseModel, Field, ValidationError, field_serializer, model_validator
from leadify.models.bant import BantField, ContactCompleteness, Duration, DurationUnit, BANT_FIELD_ORDER


class ConfigInvalid(Exception):
    """Raised when a scoring configuration violates its own invariants."""

    def __init__(self, message: str, errors: List[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class Tier(StrEnum):
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class ScoringWeights(BaseModel):
    budget: int = Field(0, ge=0)
    authority: int = Field(0, ge=0)
    need: int = Field(0, ge=0)
    timeline: int = Field(0, ge=0)
    contact: int = Field(0, ge=0)

    def for_field(self, bant_field: BantField) -> int:
        return getattr(self, bant_field.value)

    @property
    def total(self) -> int:
        return sum(self.for_field(f) for f in BANT_FIELD_ORDER)


class ScoringThresholds(BaseModel):
    hot: int = Field(..., ge=0)
    warm: int = Field(..., ge=0)


class BudgetRule(BaseModel):
    min_amount: Decimal = Field(..., ge=0)
    points: int = Field(..., ge=0)

    @field_serializer("min_amount")
    def serialize_amount(self, value: Decimal) -> str:
        return str(value)


class TimelineRule(BaseModel):
    within: Duration
    points: int = Field(..., ge=0)


class CategoryRule(BaseModel):
    category: str
    points: int = Field(..., ge=0)


class ScoringConfig(BaseModel):
    weights: ScoringWeights
    thresholds: ScoringThresholds
    budget_rules: List[BudgetRule] = Field(default_factory=list)
    authority_rules: List[CategoryRule] = Field(default_factory=list)
    need_rules: List[CategoryRule] = Field(default_factory=list)
    timeline_rules: List[TimelineRule] = Field(default_factory=list)
    contact_rules: List[CategoryRule] = Field(default_factory=list)

    currency: str = "PHP"
    # Units of `currency` per one unit of the keyed currency, e.g. {"USD": 56}
    exchange_rates: Dict[str, Decimal] = Field(default_factory=dict)
    required_fields: List[BantField] = Field(default_factory=lambda: list(BANT_FIELD_ORDER))

    @field_serializer("exchange_rates")
    def serialize_rates(self, rates: Dict[str, Decimal]) -> Dict[str, str]:
        return {code: str(rate) for code, rate in rates.items()}

    @model_validator(mode="after")
    def check_rules_within_weights(self) -> "ScoringConfig":
        problems = []
        rule_sets = {
            BantField.BUDGET: self.budget_rules,
            BantField.AUTHORITY: self.authority_rules,
            BantField.NEED: self.need_rules,
            BantField.TIMELINE: self.timeline_rules,
            BantField.CONTACT: self.contact_rules,
        }
        for bant_field, rules in rule_sets.items():
            weight = self.weights.for_field(bant_field)
            for rule in rules:
                if rule.points > weight:
                    problems.append(
                        f"{bant_field.value} rule awards {rule.points} points "
                        f"but the {bant_field.value} weight is {weight}"
                    )
        if self.thresholds.warm > self.thresholds.hot:
            problems.append(
                f"warm threshold {self.thresholds.warm} is above hot threshold {self.thresholds.hot}"
            )
        if problems:
            raise ValueError("; ".join(problems))
        return self


class ScoreResult(BaseModel):
    points: int
    tier: Tier
    max_points: int
    breakdown: Dict[BantField, int] = Field(default_factory=dict)


def load_scoring_config(data: Mapping[str, Any] | ScoringConfig) -> ScoringConfig:
    """
    Validate raw configuration into a ScoringConfig.

    Raises:
        ConfigInvalid: If any rule or threshold is inconsistent
    """
    if isinstance(data, ScoringConfig):
        data = data.model_dump()
    try:
        return ScoringConfig.model_validate(data)
    except ValidationError as e:
        errors = [err["msg"] for err in e.errors()]
        raise ConfigInvalid(f"Invalid scoring config: {'; '.join(errors)}", errors) from e


def default_scoring_config() -> ScoringConfig:
    """Illustrative defaults: budget >= 5M earns the full weight, >= 1M 60%, >= 500K 40%."""
    return ScoringConfig(
        weights=ScoringWeights(budget=30, authority=20, need=20, timeline=20, contact=10),
        thresholds=ScoringThresholds(hot=70, warm=50),
        budget_rules=[
            BudgetRule(min_amount=Decimal("5000000"), points=30),
            BudgetRule(min_amount=Decimal("1000000"), points=18),
            BudgetRule(min_amount=Decimal("500000"), points=12),
        ],
        authority_rules=[
            CategoryRule(category="sole", points=20),
            CategoryRule(category="joint", points=15),
            CategoryRule(category="group", points=10),
        ],
        need_rules=[
            CategoryRule(category="residence", points=20),
            CategoryRule(category="investment", points=15),
            CategoryRule(category="rental", points=12),
            CategoryRule(category="resale", points=10),
            CategoryRule(category="vacation", points=10),
            CategoryRule(category="other", points=5),
        ],
        timeline_rules=[
            TimelineRule(within=Duration(amount=1, unit=DurationUnit.MONTHS), points=20),
            TimelineRule(within=Duration(amount=3, unit=DurationUnit.MONTHS), points=15),
            TimelineRule(within=Duration(amount=6, unit=DurationUnit.MONTHS), points=10),
            TimelineRule(within=Duration(amount=12, unit=DurationUnit.MONTHS), points=5),
            TimelineRule(within=Duration(amount=5, unit=DurationUnit.YEARS), points=2),
        ],
        contact_rules=[
            CategoryRule(category=ContactCompleteness.FULL.value, points=10),
            CategoryRule(category=ContactCompleteness.PARTIAL.value, points=7),
            CategoryRule(category=ContactCompleteness.NAME_ONLY.value, points=3),
        ],
        currency="PHP",
    )
