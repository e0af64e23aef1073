"""
Scoring Engine

Pure function of (bant, config): identical inputs always give identical
points and tier, so it is safe to recompute after every BANT update.
"""
from decimal import Decimal
from typing import Optional
from leadify.models.bant import BANTRecord, BantField, ContactCompleteness, Money, BANT_FIELD_ORDER
from leadify.models.scoring_config import ScoreResult, ScoringConfig, Tier


def budget_in_config_currency(budget: Money, config: ScoringConfig) -> Optional[Decimal]:
    """Convert with the config's exchange rates; None when no rate is known."""
    if budget.currency == config.currency:
        return budget.amount
    rate = config.exchange_rates.get(budget.currency)
    return budget.amount * rate if rate is not None else None


def budget_points(bant: BANTRecord, config: ScoringConfig) -> int:
    """Highest rule whose minimum is at or below the budget."""
    if bant.budget is None:
        return 0
    amount = budget_in_config_currency(bant.budget, config)
    if amount is None:
        return 0
    qualifying = [rule for rule in config.budget_rules if rule.min_amount <= amount]
    if not qualifying:
        return 0
    return max(qualifying, key=lambda rule: rule.min_amount).points


def timeline_points(bant: BANTRecord, config: ScoringConfig) -> int:
    """Tightest horizon the timeline still fits within."""
    if bant.timeline is None:
        return 0
    days = bant.timeline.days
    fitting = [rule for rule in config.timeline_rules if days <= rule.within.days]
    if not fitting:
        return 0
    return min(fitting, key=lambda rule: rule.within.days).points


def _category_points(category: Optional[str], rules) -> int:
    if not category:
        return 0
    wanted = category.strip().lower()
    for rule in rules:
        if rule.category.strip().lower() == wanted:
            return rule.points
    return 0


def contact_points(bant: BANTRecord, config: ScoringConfig) -> int:
    completeness = bant.contact_completeness
    if completeness == ContactCompleteness.NONE:
        return 0
    return _category_points(completeness.value, config.contact_rules)


def tier_for(points: int, config: ScoringConfig) -> Tier:
    if points >= config.thresholds.hot:
        return Tier.HOT
    if points >= config.thresholds.warm:
        return Tier.WARM
    return Tier.COLD


def score(bant: BANTRecord, config: ScoringConfig) -> ScoreResult:
    """
    Sum per-field points and bucket the total into a tier.
    Unpopulated fields contribute zero.
    """
    breakdown = {
        BantField.BUDGET: budget_points(bant, config),
        BantField.AUTHORITY: _category_points(
            bant.authority.value if bant.authority else None, config.authority_rules
        ),
        BantField.NEED: _category_points(bant.need, config.need_rules),
        BantField.TIMELINE: timeline_points(bant, config),
        BantField.CONTACT: contact_points(bant, config),
    }
    points = sum(breakdown[f] for f in BANT_FIELD_ORDER)
    return ScoreResult(
        points=points,
        tier=tier_for(points, config),
        max_points=config.weights.total,
        breakdown=breakdown,
    )
