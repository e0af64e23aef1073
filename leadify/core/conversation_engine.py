"""
Conversation Engine
Drives one conversation turn through the qualification pipeline.

Architecture:
    Inbound message → lock(conversation) → IntentRouter → BantExtractor
        → ScoringEngine → stage advance → Responder → commit

A turn works on a private copy of the conversation. Nothing is persisted
unless intent classification and extraction both succeed; a ProviderError
from either aborts the turn and propagates so the caller can retry.

Price requests made before qualification completes are held on the state
and answered with the first reply after the conversation is Qualified.
"""
import time
import uuid
from typing import Dict, List, Optional
from loguru import logger
from pydantic import BaseModel, Field
from leadify.agents.bant_extractor import BantExtractor
from leadify.agents.intent_router import IntentRouter
from leadify.agents.responder import Responder
from leadify.core.locks import KeyedLock
from leadify.core.scoring_engine import score
from leadify.models.agent_profile import AgentProfile
from leadify.models.bant import BANTRecord, BantField
from leadify.models.conversation import (
    STAGE_FOR_FIELD,
    ConversationStage,
    ConversationState,
    Turn,
    TurnRole,
)
from leadify.models.intent import Intent, IntentDecision
from leadify.models.lead import LeadRecord
from leadify.models.scoring_config import ScoreResult, Tier
from leadify.services.agent_config_store import AgentConfigStore
from leadify.services.conversation_store import ConversationNotFound, ConversationStore
from leadify.services.handoff_service import HandoffService, get_handoff_service
from leadify.services.lead_sink import LeadSink
from leadify.utils.fallback_responses import get_fallback_reply
from leadify.utils.llm_client import ModelGateway, ProviderError
from leadify.utils.metrics import MetricsRegistry, Timer
from leadify.utils.observability import log_business_event, log_turn


class ConversationArchived(Exception):
    """The conversation was archived before the turn started."""
    pass


class ChatTurnRequest(BaseModel):
    conversation_id: Optional[str] = None
    agent_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    message: str = Field(..., max_length=4000)
    source: str = "api"


class TurnResult(BaseModel):
    """What the caller gets back for one processed message."""
    conversation_id: str
    response_text: str
    intent: Intent
    bant_snapshot: Dict[str, Optional[str]]
    score: int
    tier: Optional[Tier] = None
    stage: ConversationStage
    committed: bool = True
    lead_id: Optional[str] = None


class ConversationEngine:
    """
    Usage:
        >>> engine = ConversationEngine(store, config_store, lead_sink, gateway=gateway)
        >>> result = await engine.handle_turn(ChatTurnRequest(
        ...     agent_id="agent-7", user_id="u-1", message="Hi, looking for a condo"
        ... ))
        >>> result.stage
        <ConversationStage.AWAITING_BUDGET: 'awaiting_budget'>
    """

    def __init__(
        self,
        store: ConversationStore,
        config_store: AgentConfigStore,
        lead_sink: LeadSink,
        gateway: ModelGateway | None = None,
        router: IntentRouter | None = None,
        extractor: BantExtractor | None = None,
        responder: Responder | None = None,
        handoff_service: HandoffService | None = None,
        metrics: MetricsRegistry | None = None,
        locks: KeyedLock | None = None
    ):
        self.store = store
        self.config_store = config_store
        self.lead_sink = lead_sink

        # Allow dependency injection for testing
        self.gateway = gateway or ModelGateway()
        self.router = router or IntentRouter(self.gateway)
        self.extractor = extractor or BantExtractor(self.gateway)
        self.responder = responder or Responder(self.gateway)
        self.handoff_service = handoff_service or get_handoff_service()
        self.metrics = metrics or MetricsRegistry()
        self.locks = locks or KeyedLock()

        logger.info("Conversation engine initialized")

    async def handle_turn(self, request: ChatTurnRequest) -> TurnResult:
        """
        Process one inbound message.

        Raises:
            ProviderError: Intent or extraction call failed; nothing was committed
            ConversationArchived: The conversation is archived
            ConfigInvalid: The agent's stored configuration is invalid
        """
        conversation_id = request.conversation_id or uuid.uuid4().hex
        start = time.perf_counter()

        async with self.locks.hold(conversation_id):
            with Timer(self.metrics.turn_duration):
                state = await self._load_or_create(conversation_id, request)
                profile = await self.config_store.get_profile(state.agent_id)

                try:
                    result, newly_finalized, handoff_reason = await self._run_turn(state, request.message, profile)
                except ProviderError as e:
                    self.metrics.turn_failures.inc(reason=e.kind)
                    logger.error(f"❌ Turn aborted for {conversation_id} ({e.kind}), nothing committed: {e}")
                    raise

                committed = await self.store.commit(state)
                if not committed:
                    logger.warning(f"🗄️ {conversation_id} was archived mid-turn, state update discarded")
                    return result.model_copy(update={"committed": False})

                if handoff_reason:
                    await self.handoff_service.initiate_handoff(state, reason=handoff_reason)

                if newly_finalized or self._lead_pending(state):
                    await self._emit_lead(state, profile)
                    result.lead_id = state.lead_id

        log_turn(
            conversation_id=conversation_id,
            stage=state.current_stage.value,
            intent=result.intent.value,
            duration_ms=(time.perf_counter() - start) * 1000,
            agent_id=state.agent_id,
            score=state.score,
        )
        return result

    async def _run_turn(
        self,
        state: ConversationState,
        message: str,
        profile: AgentProfile
    ) -> tuple[TurnResult, bool, Optional[str]]:
        was_terminal = state.is_terminal
        state.add_turn(Turn(role=TurnRole.USER, content=message))

        decision: IntentDecision = await self.router.classify(message, state)
        intent = decision.intent
        state.last_intent = intent
        state.history[-1].intent = intent
        self.metrics.turns_total.inc(intent=intent.value)

        handoff_reason: Optional[str] = None
        newly_finalized = False
        config = profile.scoring_config

        if was_terminal:
            logger.debug(f"{state.conversation_id} is {state.current_stage.value}, post-qualification chat only")

        elif intent == Intent.HANDOFF_REQUEST:
            self._transition(state, ConversationStage.HANDED_OFF)
            self.metrics.handoffs_total.inc()
            handoff_reason = "User asked for a human" if decision.handoff_keyword else decision.reasoning or "Handoff requested"

        else:
            if intent == Intent.QUALIFICATION:
                missing = state.bant.missing_fields(config.required_fields)
                update = await self.extractor.extract(message, state, missing)
                changed = state.bant.apply(update)
                if changed:
                    logger.info(f"📝 {state.conversation_id} BANT updated: {changed}")
                if update.opted_out:
                    state.opted_out = True

            elif intent == Intent.ESTIMATION:
                # Prices wait until qualification is complete
                state.pending_estimation = message
                self.metrics.estimations.inc(outcome="deferred")
                log_business_event(
                    "estimation_deferred", state.conversation_id, stage=state.current_stage.value
                )

            # Always against this turn's profile
            self._rescore(state, profile)
            newly_finalized = self._advance(state, config.required_fields)

        reply = await self._reply(message, state, intent, profile)
        state.add_turn(Turn(role=TurnRole.ASSISTANT, content=reply))

        result = TurnResult(
            conversation_id=state.conversation_id,
            response_text=reply,
            intent=intent,
            bant_snapshot=state.bant.snapshot(),
            score=state.score,
            tier=Tier(state.tier) if state.tier else None,
            stage=state.current_stage,
            lead_id=state.lead_id,
        )
        return result, newly_finalized, handoff_reason

    async def _load_or_create(self, conversation_id: str, request: ChatTurnRequest) -> ConversationState:
        stored = await self.store.get(conversation_id)
        if stored is None:
            logger.info(f"🆕 New conversation {conversation_id} for agent {request.agent_id}")
            return ConversationState(
                conversation_id=conversation_id,
                agent_id=request.agent_id,
                user_id=request.user_id,
                source=request.source,
            )

        if stored.archived:
            raise ConversationArchived(f"Conversation {conversation_id} is archived")
        if stored.agent_id != request.agent_id:
            logger.warning(
                f"Conversation {conversation_id} belongs to agent {stored.agent_id}, "
                f"ignoring agent_id {request.agent_id}"
            )
        return stored.model_copy(deep=True)

    def _advance(self, state: ConversationState, required: List[BantField]) -> bool:
        """
        Move to the first unpopulated required field, never backwards.
        Returns True when the conversation was finalized this turn.
        """
        if state.opted_out:
            self._transition(state, ConversationStage.QUALIFIED)
            log_business_event("lead_opted_out", state.conversation_id, agent_id=state.agent_id)
            return True

        missing = state.bant.missing_fields(required)
        if not missing:
            self._transition(state, ConversationStage.QUALIFIED)
            log_business_event(
                "lead_qualified", state.conversation_id,
                agent_id=state.agent_id, score=state.score, tier=state.tier
            )
            return True

        next_stage = STAGE_FOR_FIELD[missing[0]]
        if next_stage.order > state.current_stage.order:
            self._transition(state, next_stage)
        return False

    def _transition(self, state: ConversationState, stage: ConversationStage) -> None:
        if stage == state.current_stage:
            return
        previous = state.current_stage
        state.current_stage = stage
        self.metrics.stage_transitions.inc(stage=stage.value)
        log_business_event(
            "stage_transition", state.conversation_id,
            from_stage=previous.value, to_stage=stage.value
        )

    def _rescore(self, state: ConversationState, profile: AgentProfile) -> ScoreResult:
        result = score(state.bant, profile.scoring_config)
        state.score = result.points
        state.tier = result.tier.value
        return result

    async def _reply(self, message: str, state: ConversationState, intent: Intent, profile: AgentProfile) -> str:
        estimating = state.estimation_due(intent)
        try:
            response = await self.responder.reply(message, state, intent, profile)
        except ProviderError as e:
            logger.warning(f"⚠️ Reply generation failed for {state.conversation_id}, using fallback: {e}")
            if state.current_stage == ConversationStage.HANDED_OFF:
                return self.handoff_service.get_handoff_message(state.bant.contact_name)
            return get_fallback_reply(state, profile).content

        if estimating:
            # Only a delivered estimate clears the pending request
            state.pending_estimation = None
            self.metrics.estimations.inc(outcome="answered")
            log_business_event("estimation_answered", state.conversation_id, agent_id=state.agent_id)
        return response.content

    def _lead_pending(self, state: ConversationState) -> bool:
        return state.current_stage == ConversationStage.QUALIFIED and state.lead_id is None

    async def _emit_lead(self, state: ConversationState, profile: AgentProfile) -> None:
        """
        Hand the finalized lead to the sink after the state is committed.
        A failed emission leaves `lead_id` unset and is retried next turn.
        """
        result = score(state.bant, profile.scoring_config)
        lead = LeadRecord(
            conversation_id=state.conversation_id,
            agent_id=state.agent_id,
            user_id=state.user_id,
            source=state.source,
            bant=state.bant,
            score=result.points,
            tier=result.tier,
            score_breakdown=result.breakdown,
            contact_name=state.bant.contact_name,
            contact_phone=state.bant.contact_phone_e164 or state.bant.contact_phone,
            contact_email=state.bant.contact_email,
            opted_out=state.opted_out,
            qualification_round=state.qualification_round,
        )
        try:
            state.lead_id = await self.lead_sink.emit(lead)
        except Exception as e:
            logger.error(f"💾 Lead emission failed for {state.conversation_id}, will retry next turn: {e}")
            return

        self.metrics.leads_finalized.inc(tier=result.tier.value)
        log_business_event(
            "lead_finalized", state.conversation_id,
            lead_id=state.lead_id, tier=result.tier.value, score=result.points, opted_out=state.opted_out
        )
        if not await self.store.commit(state):
            logger.warning(f"🗄️ {state.conversation_id} archived before lead id could be stored")

    async def restart(self, conversation_id: str) -> ConversationState:
        """
        Clear the collected BANT data and start the questionnaire over.
        History is kept. This is the only way a stage moves backwards.
        """
        async with self.locks.hold(conversation_id):
            state = await self.store.get(conversation_id)
            if state is None:
                raise ConversationNotFound(conversation_id)
            if state.archived:
                raise ConversationArchived(f"Conversation {conversation_id} is archived")

            state.bant = BANTRecord()
            state.current_stage = ConversationStage.GREETING
            state.score = 0
            state.tier = None
            state.opted_out = False
            state.lead_id = None
            state.qualification_round += 1
            state.add_turn(Turn(role=TurnRole.SYSTEM, content="Conversation restarted"))
            await self.store.save(state)

        log_business_event("conversation_restarted", conversation_id, round=state.qualification_round)
        return state

    async def archive(self, conversation_id: str) -> None:
        """Does not wait for in-flight turns; their commit is discarded instead."""
        if not await self.store.archive(conversation_id):
            raise ConversationNotFound(conversation_id)
        log_business_event("conversation_archived", conversation_id)

    async def get_state(self, conversation_id: str) -> ConversationState:
        state = await self.store.get(conversation_id)
        if state is None:
            raise ConversationNotFound(conversation_id)
        return state
