from decimal import Decimal, InvalidOperation
from typing import List, Optional
from pydantic_ai import Agent
from loguru import logger
from leadify.config import get_settings
from leadify.models.bant import BantField, Duration, Money, PartialBantUpdate
from leadify.models.conversation import ConversationStage, ConversationState
from leadify.models.extraction_response import NormalizedBantValue, RawBantExtraction
from leadify.models.token_usage import OperationType
from leadify.utils.bant_normalizer import (
    CENTS,
    categorize_need,
    clean_phone,
    detect_opt_out,
    is_noise,
    parse_authority,
    parse_duration,
    parse_money,
    scan_contact,
    to_e164,
)
from leadify.utils.llm_client import ModelGateway


class ExtractionAmbiguous(Exception):
    """A budget or timeline phrase could not be resolved to a value."""

    def __init__(self, field: BantField, raw: str):
        super().__init__(f"Could not normalize {field.value}: {raw!r}")
        self.field = field
        self.raw = raw


EXTRACTION_INSTRUCTIONS = (
    "You extract lead qualification details from one chat message about buying real estate. "
    "Copy the user's phrases verbatim into the *_text fields; do not convert or compute values. "
    "budget_text: how much they can spend. authority_text: who makes the decision. "
    "need_text: what the property is for. timeline_text: when they plan to buy. "
    "contact_*: name, phone and email exactly as written. "
    "List a field in revised_fields only when the user explicitly corrects something they said before. "
    "Set opted_out when the user declines to continue or refuses to share details. "
    "Leave everything else empty. Never guess."
)

NORMALIZATION_INSTRUCTIONS = (
    "Convert one phrase into a number. For money return the full amount with multipliers applied "
    "and the ISO currency code. For time-to-purchase return the amount and unit (days, weeks, months, years). "
    "If the phrase has no usable value set parseable to false."
)


class BantExtractor:
    """
    Pulls BANT details out of a user message.

    The model reports raw phrases; canonical values come from the
    deterministic normalizer. Phrases the normalizer cannot read get one
    extra `bant_normalization` call; a phrase that call cannot resolve is
    dropped as ambiguous, while a failed call aborts the turn.
    """

    def __init__(
        self,
        gateway: ModelGateway,
        agent: Agent | None = None,
        normalizer_agent: Agent | None = None,
        model: str | None = None,
        normalization_model: str | None = None
    ):
        settings = get_settings()
        self.gateway = gateway
        self.model_name = model or settings.extraction_model
        self.normalization_model_name = normalization_model or settings.normalization_model
        self._agent = agent
        self._normalizer_agent = normalizer_agent

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = Agent(
                self.model_name,
                output_type=RawBantExtraction,
                instructions=EXTRACTION_INSTRUCTIONS,
            )
            logger.info(f"BantExtractor initialized with model: {self.model_name}")
        return self._agent

    @property
    def normalizer_agent(self) -> Agent:
        if self._normalizer_agent is None:
            self._normalizer_agent = Agent(
                self.normalization_model_name,
                output_type=NormalizedBantValue,
                instructions=NORMALIZATION_INSTRUCTIONS,
            )
        return self._normalizer_agent

    async def extract(
        self,
        message: str,
        state: ConversationState,
        target_fields: List[BantField]
    ) -> PartialBantUpdate:
        """
        Raises:
            ProviderError: The extraction or normalization call failed; the turn must abort
        """
        if is_noise(message):
            logger.debug(f"Noise message in {state.conversation_id}, nothing to extract")
            return PartialBantUpdate()

        operation = (
            OperationType.CONTACT_EXTRACTION
            if state.current_stage == ConversationStage.AWAITING_CONTACT
            else OperationType.BANT_EXTRACTION
        )
        result = await self.gateway.invoke(
            operation,
            self.agent,
            self.build_prompt(message, state, target_fields),
            conversation_id=state.conversation_id,
            agent_id=state.agent_id,
            model=self.model_name,
        )
        raw: RawBantExtraction = result.output

        update = PartialBantUpdate()
        target = state.current_stage.target_field

        await self._resolve_budget(update, raw.budget_text, message, target, state)
        await self._resolve_timeline(update, raw.timeline_text, message, target, state)

        update.authority = parse_authority(raw.authority_text or "")
        if update.authority is None and target == BantField.AUTHORITY:
            update.authority = parse_authority(message)

        update.need = categorize_need(raw.need_text or "")
        if update.need is None and target == BantField.NEED:
            backstop = categorize_need(message)
            # A bare "other" from the whole message is not an answer
            update.need = backstop if backstop != "other" else None

        self._resolve_contact(update, raw, message, state)

        update.supersedes = set(raw.revised_fields) & update.fields_present()
        # A refusal phrase only counts when the message answered nothing
        update.opted_out = raw.opted_out or (
            not update.fields_present() and not update.ambiguous and detect_opt_out(message)
        )

        logger.success(
            f"Extracted {sorted(f.value for f in update.fields_present())} "
            f"from {state.conversation_id} ({operation.value})"
        )
        return update

    def build_prompt(self, message: str, state: ConversationState, target_fields: List[BantField]) -> str:
        settings = get_settings()
        history = state.format_history(limit=min(settings.history_window_size, 6))
        wanted = ", ".join(f.value for f in target_fields) or "none"
        return f"""
        CURRENT STAGE:
        {state.current_stage.value}

        STILL MISSING:
        {wanted}

        RECENT CONVERSATION:
        {history}

        MESSAGE TO EXTRACT FROM:
        {message}
        """

    async def _resolve_budget(
        self,
        update: PartialBantUpdate,
        text: Optional[str],
        message: str,
        target: Optional[BantField],
        state: ConversationState
    ) -> None:
        currency = get_settings().default_currency
        if text:
            update.budget = parse_money(text, currency)
            if update.budget is None:
                try:
                    update.budget = await self._normalize_money(text, state)
                except ExtractionAmbiguous as e:
                    self._mark_ambiguous(update, e, state)
                    return
        if update.budget is None and target == BantField.BUDGET:
            update.budget = parse_money(message, currency)

    async def _resolve_timeline(
        self,
        update: PartialBantUpdate,
        text: Optional[str],
        message: str,
        target: Optional[BantField],
        state: ConversationState
    ) -> None:
        if text:
            update.timeline = parse_duration(text)
            if update.timeline is None:
                try:
                    update.timeline = await self._normalize_duration(text, state)
                except ExtractionAmbiguous as e:
                    self._mark_ambiguous(update, e, state)
                    return
        if update.timeline is None and target == BantField.TIMELINE:
            update.timeline = parse_duration(message)

    def _resolve_contact(
        self,
        update: PartialBantUpdate,
        raw: RawBantExtraction,
        message: str,
        state: ConversationState
    ) -> None:
        region = get_settings().default_phone_region
        update.contact_name = raw.contact_name.strip() if raw.contact_name else None
        update.contact_phone = clean_phone(raw.contact_phone) if raw.contact_phone else None
        update.contact_email = raw.contact_email.strip().lower() if raw.contact_email else None

        if state.current_stage == ConversationStage.AWAITING_CONTACT:
            scanned = scan_contact(message, region)
            update.contact_name = update.contact_name or scanned.name
            update.contact_phone = update.contact_phone or scanned.phone
            update.contact_email = update.contact_email or scanned.email

        if update.contact_phone:
            update.contact_phone_e164 = to_e164(update.contact_phone, region)

    async def _normalize_money(self, text: str, state: ConversationState) -> Money:
        value = await self._normalize(BantField.BUDGET, text, state)
        if value.amount is None or value.amount < 0:
            raise ExtractionAmbiguous(BantField.BUDGET, text)
        try:
            amount = Decimal(str(value.amount)).quantize(CENTS)
        except InvalidOperation as e:
            raise ExtractionAmbiguous(BantField.BUDGET, text) from e
        currency = (value.currency or get_settings().default_currency).upper()
        return Money(amount=amount, currency=currency, raw=text.strip())

    async def _normalize_duration(self, text: str, state: ConversationState) -> Duration:
        value = await self._normalize(BantField.TIMELINE, text, state)
        if value.amount is None or value.amount < 0 or value.duration_unit is None:
            raise ExtractionAmbiguous(BantField.TIMELINE, text)
        return Duration(amount=value.amount, unit=value.duration_unit, raw=text.strip())

    async def _normalize(self, bant_field: BantField, text: str, state: ConversationState) -> NormalizedBantValue:
        prompt = f"""
        FIELD:
        {bant_field.value}

        DEFAULT CURRENCY:
        {get_settings().default_currency}

        PHRASE:
        {text}
        """
        result = await self.gateway.invoke(
            OperationType.BANT_NORMALIZATION,
            self.normalizer_agent,
            prompt,
            conversation_id=state.conversation_id,
            agent_id=state.agent_id,
            model=self.normalization_model_name,
        )

        value: NormalizedBantValue = result.output
        if not value.parseable:
            raise ExtractionAmbiguous(bant_field, text)
        return value

    def _mark_ambiguous(self, update: PartialBantUpdate, error: ExtractionAmbiguous, state: ConversationState) -> None:
        update.ambiguous.add(error.field)
        logger.bind(
            event_type="extraction_ambiguous",
            conversation_id=state.conversation_id,
            field=error.field.value,
        ).warning(f"❓ {error}")
