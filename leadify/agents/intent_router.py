import re
from pydantic_ai import Agent
from loguru import logger
from leadify.config import get_settings
from leadify.models.conversation import ConversationState
from leadify.models.intent import Intent, IntentClassification, IntentDecision
from leadify.models.token_usage import OperationType
from leadify.utils.bant_normalizer import word_count
from leadify.utils.llm_client import ModelGateway

# Explicit requests for a person. Matched before the model output is trusted.
_HANDOFF_PHRASES = re.compile(
    r"\b(talk|speak|chat)\s+(to|with)\s+(a\s+|an\s+)?(human|person|real person|someone|agent|broker)\b"
    r"|\breal person\b"
    r"|\bhuman (agent|please)\b"
    r"|\bagent,? please\b"
    r"|\blive agent\b"
    r"|\bcall me instead\b",
    re.IGNORECASE,
)

INSTRUCTIONS = (
    "You classify one message in a real-estate lead qualification chat. "
    "qualification: the user answers or volunteers budget, decision authority, purpose, timeline or contact details. "
    "estimation: the user asks what they can afford, prices or payment computations. "
    "informational: the user asks a question about properties, locations, process or the company. "
    "greeting: hello, thanks, small talk with no other content. "
    "handoff_request: the user wants to talk to a human. "
    "Use the conversation context: a short reply right after a question is usually an answer to it. "
    "When two intents are plausible, put the runner-up in secondary_intent and lower your confidence."
)


class IntentRouter:
    """
    Decides what the user is doing this turn.

    One model call per message (`intent_classification`), then two
    deterministic overrides: explicit handoff phrases always win, and an
    ambiguous informational reply in the middle of the questionnaire is
    treated as an answer.
    """

    def __init__(self, gateway: ModelGateway, agent: Agent | None = None, model: str | None = None):
        settings = get_settings()
        self.gateway = gateway
        self.model_name = model or settings.intent_model
        self._agent = agent

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = Agent(
                self.model_name,
                output_type=IntentClassification,
                instructions=INSTRUCTIONS,
            )
            logger.info(f"IntentRouter initialized with model: {self.model_name}")
        return self._agent

    def build_prompt(self, message: str, state: ConversationState) -> str:
        settings = get_settings()
        history = "\n".join(
            f"{turn.role.value.upper()}: {turn.content}"
            for turn in state.recent_history(settings.history_window_size)
        )
        return f"""
        CURRENT STAGE:
        {state.current_stage.value}

        CONVERSATION CONTEXT:
        {history}

        NEW MESSAGE TO CLASSIFY:
        {message}
        """

    async def classify(self, message: str, state: ConversationState) -> IntentDecision:
        """
        Raises:
            ProviderError: The classification call failed; the turn must abort
        """
        result = await self.gateway.invoke(
            OperationType.INTENT_CLASSIFICATION,
            self.agent,
            self.build_prompt(message, state),
            conversation_id=state.conversation_id,
            agent_id=state.agent_id,
            model=self.model_name,
        )
        classification: IntentClassification = result.output

        decision = IntentDecision(
            intent=classification.intent,
            model_intent=classification.intent,
            confidence=classification.confidence,
            reasoning=classification.reasoning,
        )

        if is_handoff_phrase(message):
            decision.intent = Intent.HANDOFF_REQUEST
            decision.handoff_keyword = True
        elif self._should_stick(message, state, classification):
            decision.intent = Intent.QUALIFICATION
            decision.sticky_applied = True
            logger.debug(
                f"Sticky intent: {classification.intent.value} -> qualification "
                f"at {state.current_stage.value} ({classification.confidence:.2f})"
            )

        logger.success(f"Intent for {state.conversation_id}: {decision.intent.value}")
        return decision

    def _should_stick(
        self,
        message: str,
        state: ConversationState,
        classification: IntentClassification
    ) -> bool:
        if not state.current_stage.is_mid_bant:
            return False
        if classification.intent not in (Intent.INFORMATIONAL, Intent.GREETING):
            return False
        return is_ambiguous(message, classification)


def is_handoff_phrase(message: str) -> bool:
    return bool(message) and bool(_HANDOFF_PHRASES.search(message))


def is_ambiguous(message: str, classification: IntentClassification) -> bool:
    """Low confidence, a qualification runner-up, or a short non-question answer."""
    settings = get_settings()
    if classification.confidence < settings.sticky_intent_confidence:
        return True
    if classification.secondary_intent == Intent.QUALIFICATION:
        return True
    return "?" not in message and word_count(message) <= settings.short_answer_max_words
