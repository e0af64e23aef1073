"""
Fallback Responses for LLM Degradation

Templated replies used when the reply model is unavailable.
They always move the questionnaire forward without making assumptions.
"""
from typing import Optional
from leadify.models.agent_profile import AgentProfile
from leadify.models.bant import BantField
from leadify.models.conversation import ConversationStage, ConversationState
from leadify.models.reply_response import ReplyResponse

DEFAULT_QUESTIONS = {
    BantField.BUDGET: "To point you to the right properties, what budget range are you working with?",
    BantField.AUTHORITY: "Will you be making the decision on your own, or together with someone else?",
    BantField.NEED: "What will the property be for: your own residence, an investment, rental income, or something else?",
    BantField.TIMELINE: "When are you hoping to buy? For example within 3 months, 6 months, or next year.",
    BantField.CONTACT: "Could you share your full name and a phone number or email so our specialist can reach you?",
}

DEFAULT_GREETING = "Hi! Thanks for reaching out. I'd love to help you find the right property."

QUALIFIED_CLOSING = (
    "Thank you, that's everything I need! One of our property specialists will "
    "contact you shortly with options that match what you're looking for."
)

OPTED_OUT_CLOSING = (
    "No problem at all, thanks for your time. If you change your mind, just message us here."
)

HANDED_OFF_LINE = (
    "I've let our team know. A specialist will pick up this conversation shortly."
)


def question_for(bant_field: BantField, profile: Optional[AgentProfile] = None) -> str:
    """Agent-specific wording when configured, built-in wording otherwise."""
    if profile and profile.bant_questions.get(bant_field):
        return profile.bant_questions[bant_field]
    return DEFAULT_QUESTIONS[bant_field]


def get_fallback_reply(state: ConversationState, profile: Optional[AgentProfile] = None) -> ReplyResponse:
    """
    Safe reply when the reply model fails.

    Returns the next question for the current stage, or a closing line
    once the conversation is over.
    """
    stage = state.current_stage

    if stage == ConversationStage.HANDED_OFF:
        content = HANDED_OFF_LINE
    elif stage == ConversationStage.QUALIFIED:
        content = OPTED_OUT_CLOSING if state.opted_out else QUALIFIED_CLOSING
    elif stage.target_field is not None:
        content = question_for(stage.target_field, profile)
        asked = stage.target_field.value
        return ReplyResponse(content=content, asked_field=asked, reasoning="Fallback: templated next question")
    else:
        greeting = profile.greeting if profile and profile.greeting else DEFAULT_GREETING
        content = f"{greeting} {question_for(BantField.BUDGET, profile)}"
        return ReplyResponse(content=content, asked_field=BantField.BUDGET.value, reasoning="Fallback: greeting")

    return ReplyResponse(content=content, reasoning="Fallback: templated closing line")
