from typing import List
from pydantic_ai import Agent
from loguru import logger
from leadify.config import get_settings
from leadify.models.agent_profile import AgentProfile
from leadify.models.bant import BantField
from leadify.models.conversation import ConversationStage, ConversationState
from leadify.models.intent import Intent
from leadify.models.reply_response import ReplyResponse
from leadify.models.token_usage import OperationType
from leadify.utils.fallback_responses import question_for
from leadify.utils.llm_client import ModelGateway

INSTRUCTIONS = (
    "You are the warm and professional assistant of a real-estate agent. "
    "### TONE & STYLE ### "
    "1. CONCISE: 1-3 sentences. This is a chat. "
    "2. ONE QUESTION: ask at most one qualification question per reply, using the wording you are given. "
    "3. ACKNOWLEDGE: briefly confirm what the user just told you before asking the next thing. "
    "4. ANSWER FIRST: when the user asks something, answer it helpfully before returning to the questionnaire. "
    "### COMPLIANCE ### "
    "NEVER promise prices, availability, returns or approvals. Use words like 'typically' or 'could'."
)


class Responder:
    """
    Writes the assistant reply for a turn. One model call: `chat_reply`,
    `semantic_search` when the user asked an informational question, or
    `payment_extraction` when a price estimate is due after qualification.
    """

    def __init__(self, gateway: ModelGateway, agent: Agent | None = None, model: str | None = None):
        settings = get_settings()
        self.gateway = gateway
        self.model_name = model or settings.reply_model
        self._agent = agent

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = Agent(
                self.model_name,
                output_type=ReplyResponse,
                instructions=INSTRUCTIONS,
            )
            logger.info(f"Responder initialized with model: {self.model_name}")
        return self._agent

    async def reply(
        self,
        message: str,
        state: ConversationState,
        intent: Intent,
        profile: AgentProfile
    ) -> ReplyResponse:
        """
        Raises:
            ProviderError: The reply call failed; callers use a fallback template
        """
        operation = self.operation_for(state, intent)
        logger.info(f"🎙️ Generating reply for {state.conversation_id} ({operation.value})")

        result = await self.gateway.invoke(
            operation,
            self.agent,
            self.build_prompt(message, state, intent, profile),
            conversation_id=state.conversation_id,
            agent_id=state.agent_id,
            model=self.model_name,
        )
        logger.success(f"🎙️ Reply ready for {state.conversation_id}")
        return result.output

    def operation_for(self, state: ConversationState, intent: Intent) -> OperationType:
        if state.estimation_due(intent):
            return OperationType.PAYMENT_EXTRACTION
        if intent == Intent.INFORMATIONAL:
            return OperationType.SEMANTIC_SEARCH
        return OperationType.CHAT_REPLY

    def build_prompt(
        self,
        message: str,
        state: ConversationState,
        intent: Intent,
        profile: AgentProfile
    ) -> str:
        history = state.format_history(limit=6)
        known = {k: v for k, v in state.bant.snapshot().items() if v}
        return f"""
        [AGENT]
        Name: {profile.display_name or get_settings().default_agent_name}
        Greeting: {profile.greeting or 'none configured'}

        [WHERE WE ARE]
        Stage: {state.current_stage.value}
        User intent this turn: {intent.value}
        Already known: {known or 'nothing yet'}

        [WHAT TO DO]
        {self._goal(state, intent, profile)}

        [RECENT HISTORY]
        {history}

        [LATEST MESSAGE]
        {message}
        """

    def _goal(self, state: ConversationState, intent: Intent, profile: AgentProfile) -> str:
        stage = state.current_stage
        if stage == ConversationStage.HANDED_OFF:
            return "A human specialist is taking over. Reassure the user; ask nothing."
        if state.estimation_due(intent):
            known = state.bant.snapshot()
            request = state.pending_estimation or "the latest message"
            return (
                f"The user asked for a price estimate: {request}. "
                f"Give a rough, non-binding price range and a typical payment plan for a "
                f"budget of {known['budget']} and a timeline of {known['timeline']}. "
                "Say a specialist will confirm exact figures; ask nothing."
            )
        if stage == ConversationStage.QUALIFIED:
            if state.opted_out:
                return "The user does not want to continue. Thank them politely; ask nothing."
            return "Qualification is complete. Thank the user and say a specialist will follow up; ask nothing."
        missing: List[BantField] = state.bant.missing_fields(profile.scoring_config.required_fields)
        if not missing:
            return "Answer the user's message. Ask nothing."
        question = question_for(missing[0], profile)
        if intent == Intent.ESTIMATION:
            return (
                "The user asked about prices. Say you can prepare an estimate once you know a bit more "
                f"about what they need, then ask exactly this question: {question}"
            )
        return f"Then ask exactly this question: {question}"
