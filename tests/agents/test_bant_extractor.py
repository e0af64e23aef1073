"""
Tests for the BANT extractor: raw model phrases, deterministic
normalization, the normalization fallback call and ambiguity handling.
"""
import pytest
from decimal import Decimal

from leadify.agents.bant_extractor import BantExtractor
from leadify.models.bant import AuthorityLevel, BantField, DurationUnit, BANT_FIELD_ORDER
from leadify.models.conversation import ConversationStage
from leadify.models.extraction_response import NormalizedBantValue, RawBantExtraction
from leadify.models.token_usage import GroupBy, OperationType
from leadify.utils.llm_client import ProviderError, ProviderTimeout


@pytest.fixture
def build_extractor(gateway, fake_agent):
    def _build(raw: RawBantExtraction, normalized=None, normalizer_error=None, extraction_error=None):
        return BantExtractor(
            gateway,
            agent=fake_agent(raw, error=extraction_error),
            normalizer_agent=fake_agent(
                normalized or NormalizedBantValue(parseable=False), error=normalizer_error
            ),
        )
    return _build


async def operations(ledger) -> dict:
    rows = await ledger.aggregate(group_by=GroupBy.OPERATION_TYPE)
    return {r.group: r.count for r in rows}


class TestExtract:

    async def test_budget_phrase_is_normalized(self, build_extractor, make_state, ledger):
        extractor = build_extractor(RawBantExtraction(budget_text="25 million pesos"))
        state = make_state(ConversationStage.AWAITING_BUDGET)

        update = await extractor.extract("Around 25 million pesos", state, BANT_FIELD_ORDER)

        assert update.budget.amount == Decimal("25000000.00")
        assert update.budget.currency == "PHP"
        assert await operations(ledger) == {"bant_extraction": 1}

    async def test_several_fields_in_one_message(self, build_extractor, make_state):
        raw = RawBantExtraction(
            budget_text="15M",
            authority_text="me and my wife",
            need_text="investment",
            timeline_text="within 6 months",
        )
        extractor = build_extractor(raw)

        update = await extractor.extract(
            "15M, me and my wife, investment, within 6 months",
            make_state(ConversationStage.AWAITING_BUDGET),
            BANT_FIELD_ORDER,
        )

        assert update.budget.amount == Decimal("15000000.00")
        assert update.authority == AuthorityLevel.JOINT
        assert update.need == "investment"
        assert (update.timeline.amount, update.timeline.unit) == (6, DurationUnit.MONTHS)

    async def test_noise_makes_no_model_call(self, build_extractor, make_state, ledger):
        extractor = build_extractor(RawBantExtraction(budget_text="5M"))

        update = await extractor.extract("👍", make_state(ConversationStage.AWAITING_BUDGET), BANT_FIELD_ORDER)

        assert update.is_empty
        assert extractor.agent.calls == 0
        assert await ledger.records() == []

    async def test_sole_decision_maker_backstop(self, build_extractor, make_state):
        extractor = build_extractor(RawBantExtraction())

        update = await extractor.extract(
            "I'm the sole decision maker", make_state(ConversationStage.AWAITING_AUTHORITY), BANT_FIELD_ORDER
        )

        assert update.authority == AuthorityLevel.SOLE

    async def test_non_answer_leaves_authority_empty(self, build_extractor, make_state):
        extractor = build_extractor(RawBantExtraction())

        update = await extractor.extract(
            "Let me think about that first", make_state(ConversationStage.AWAITING_AUTHORITY), BANT_FIELD_ORDER
        )

        assert update.authority is None
        assert update.is_empty

    async def test_need_backstop_ignores_other(self, build_extractor, make_state):
        extractor = build_extractor(RawBantExtraction())
        state = make_state(ConversationStage.AWAITING_NEED)

        assert (await extractor.extract("residency", state, BANT_FIELD_ORDER)).need == "residence"
        assert (await extractor.extract("hmm let me think", state, BANT_FIELD_ORDER)).need is None

    async def test_backstop_only_for_current_stage(self, build_extractor, make_state):
        extractor = build_extractor(RawBantExtraction())

        update = await extractor.extract(
            "maybe 3 months", make_state(ConversationStage.AWAITING_BUDGET), BANT_FIELD_ORDER
        )

        assert update.timeline is None
        assert update.budget is None


class TestNormalizationFallback:

    async def test_unreadable_phrase_uses_normalization_call(self, build_extractor, make_state, ledger):
        extractor = build_extractor(
            RawBantExtraction(budget_text="two and a half million"),
            normalized=NormalizedBantValue(amount=2500000, currency="php"),
        )

        update = await extractor.extract(
            "two and a half million", make_state(ConversationStage.AWAITING_BUDGET), BANT_FIELD_ORDER
        )

        assert update.budget.amount == Decimal("2500000.00")
        assert update.budget.currency == "PHP"
        assert update.ambiguous == set()
        assert await operations(ledger) == {"bant_extraction": 1, "bant_normalization": 1}

    async def test_timeline_normalization(self, build_extractor, make_state):
        extractor = build_extractor(
            RawBantExtraction(timeline_text="once my bonus comes in around summer"),
            normalized=NormalizedBantValue(amount=8, duration_unit=DurationUnit.MONTHS),
        )

        update = await extractor.extract(
            "once my bonus comes in around summer",
            make_state(ConversationStage.AWAITING_TIMELINE),
            BANT_FIELD_ORDER,
        )

        assert (update.timeline.amount, update.timeline.unit) == (8, DurationUnit.MONTHS)

    async def test_unparseable_marks_field_ambiguous(self, build_extractor, make_state):
        extractor = build_extractor(RawBantExtraction(budget_text="a decent amount"))

        update = await extractor.extract(
            "a decent amount", make_state(ConversationStage.AWAITING_BUDGET), BANT_FIELD_ORDER
        )

        assert update.budget is None
        assert update.ambiguous == {BantField.BUDGET}

    async def test_normalization_failure_aborts(self, build_extractor, make_state, ledger):
        extractor = build_extractor(
            RawBantExtraction(budget_text="quite a lot", need_text="rental"),
            normalizer_error=Exception("503 Service Unavailable"),
        )

        with pytest.raises(ProviderError) as exc_info:
            await extractor.extract(
                "quite a lot, for rental", make_state(ConversationStage.AWAITING_BUDGET), BANT_FIELD_ORDER
            )

        assert exc_info.value.kind == "server_error"
        assert exc_info.value.retryable is True
        failed = [r for r in await ledger.records() if not r.success]
        assert [r.operation_type for r in failed] == [OperationType.BANT_NORMALIZATION]

    async def test_normalization_timeout_aborts(self, gateway, fake_agent, make_state, ledger):
        gateway.timeout_seconds = 0.05
        extractor = BantExtractor(
            gateway,
            agent=fake_agent(RawBantExtraction(timeline_text="once my bonus comes in")),
            normalizer_agent=fake_agent(
                NormalizedBantValue(amount=8, duration_unit=DurationUnit.MONTHS), delay=0.5
            ),
        )

        with pytest.raises(ProviderTimeout):
            await extractor.extract(
                "once my bonus comes in", make_state(ConversationStage.AWAITING_TIMELINE), BANT_FIELD_ORDER
            )

        assert await operations(ledger) == {"bant_extraction": 1, "bant_normalization": 1}


class TestContact:

    async def test_contact_stage_uses_contact_operation(self, build_extractor, make_state, ledger):
        extractor = build_extractor(RawBantExtraction())

        update = await extractor.extract(
            "Samuel Jackson, 098124814122",
            make_state(ConversationStage.AWAITING_CONTACT),
            [BantField.CONTACT],
        )

        assert update.contact_name == "Samuel Jackson"
        assert update.contact_phone == "098124814122"
        assert await operations(ledger) == {"contact_extraction": 1}

    async def test_model_values_are_cleaned(self, build_extractor, make_state):
        raw = RawBantExtraction(
            contact_name=" Ana Cruz ", contact_phone="0917-123-4567", contact_email="Ana@Example.COM"
        )
        extractor = build_extractor(raw)

        update = await extractor.extract(
            "Ana Cruz 0917-123-4567 Ana@Example.COM",
            make_state(ConversationStage.AWAITING_NEED),
            BANT_FIELD_ORDER,
        )

        assert update.contact_name == "Ana Cruz"
        assert update.contact_phone == "09171234567"
        assert update.contact_phone_e164 == "+639171234567"
        assert update.contact_email == "ana@example.com"


class TestSignals:

    async def test_supersedes_only_present_fields(self, build_extractor, make_state):
        raw = RawBantExtraction(
            budget_text="30 million",
            revised_fields=[BantField.BUDGET, BantField.TIMELINE],
        )
        extractor = build_extractor(raw)

        update = await extractor.extract(
            "Actually my budget is 30 million", make_state(ConversationStage.AWAITING_NEED), BANT_FIELD_ORDER
        )

        assert update.supersedes == {BantField.BUDGET}

    async def test_opt_out_from_message(self, build_extractor, make_state):
        extractor = build_extractor(RawBantExtraction())

        update = await extractor.extract(
            "No thanks, I'd rather not share that", make_state(ConversationStage.AWAITING_CONTACT),
            [BantField.CONTACT],
        )

        assert update.opted_out is True

    async def test_refusal_words_inside_an_answer_are_not_opt_out(self, build_extractor, make_state):
        extractor = build_extractor(RawBantExtraction(need_text="our residence"))

        update = await extractor.extract(
            "It's for our residence, no thanks to the last agent",
            make_state(ConversationStage.AWAITING_NEED),
            BANT_FIELD_ORDER,
        )

        assert update.need == "residence"
        assert update.opted_out is False

    async def test_opt_out_from_model(self, build_extractor, make_state):
        extractor = build_extractor(RawBantExtraction(opted_out=True))

        update = await extractor.extract(
            "I'll pass on that", make_state(ConversationStage.AWAITING_BUDGET), BANT_FIELD_ORDER
        )

        assert update.opted_out is True

    async def test_extraction_failure_propagates(self, build_extractor, make_state):
        extractor = build_extractor(RawBantExtraction(), extraction_error=Exception("Rate limit exceeded"))

        with pytest.raises(ProviderError) as exc_info:
            await extractor.extract("5M", make_state(ConversationStage.AWAITING_BUDGET), BANT_FIELD_ORDER)

        assert exc_info.value.kind == "rate_limit"
