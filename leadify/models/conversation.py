import datetime as dt
from enum import StrEnum
from typing import List, Optional
from pydantic import BaseModel, Field
from leadify.models.base import MongoBaseModel, utc_now
from leadify.models.bant import BANTRecord, BantField
from leadify.models.intent import Intent


class ConversationStage(StrEnum):
    GREETING = "greeting"
    AWAITING_BUDGET = "awaiting_budget"
    AWAITING_AUTHORITY = "awaiting_authority"
    AWAITING_NEED = "awaiting_need"
    AWAITING_TIMELINE = "awaiting_timeline"
    AWAITING_CONTACT = "awaiting_contact"
    QUALIFIED = "qualified"
    HANDED_OFF = "handed_off"

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self in (ConversationStage.QUALIFIED, ConversationStage.HANDED_OFF)

    @property
    def is_mid_bant(self) -> bool:
        return ConversationStage.AWAITING_BUDGET.order <= self.order <= ConversationStage.AWAITING_CONTACT.order

    @property
    def target_field(self) -> Optional[BantField]:
        return STAGE_FOR_FIELD_REVERSE.get(self)


STAGE_ORDER: List[ConversationStage] = list(ConversationStage)

STAGE_FOR_FIELD = {
    BantField.BUDGET: ConversationStage.AWAITING_BUDGET,
    BantField.AUTHORITY: ConversationStage.AWAITING_AUTHORITY,
    BantField.NEED: ConversationStage.AWAITING_NEED,
    BantField.TIMELINE: ConversationStage.AWAITING_TIMELINE,
    BantField.CONTACT: ConversationStage.AWAITING_CONTACT,
}
STAGE_FOR_FIELD_REVERSE = {stage: f for f, stage in STAGE_FOR_FIELD.items()}


class TurnRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Turn(BaseModel):
    role: TurnRole
    content: str
    intent: Optional[Intent] = None
    timestamp: dt.datetime = Field(default_factory=utc_now)


class ConversationState(MongoBaseModel):
    """
    One per conversation. History is append-only and persisted in full;
    only `recent_history` is ever handed to a model.
    """
    conversation_id: str
    agent_id: str
    user_id: str
    source: str = "api"

    current_stage: ConversationStage = ConversationStage.GREETING
    bant: BANTRecord = Field(default_factory=BANTRecord)
    history: List[Turn] = Field(default_factory=list)

    last_intent: Optional[Intent] = None
    score: int = 0
    tier: Optional[str] = None
    opted_out: bool = False
    archived: bool = False
    lead_id: Optional[str] = None
    # Price request held back until qualification completes
    pending_estimation: Optional[str] = None
    qualification_round: int = 0
    message_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.current_stage.is_terminal

    def estimation_due(self, intent: Intent) -> bool:
        """Estimates are only given once qualification completed without an opt-out."""
        if self.current_stage != ConversationStage.QUALIFIED or self.opted_out:
            return False
        return intent == Intent.ESTIMATION or self.pending_estimation is not None

    def add_turn(self, turn: Turn) -> None:
        self.history.append(turn)
        if turn.role == TurnRole.USER:
            self.message_count += 1
        self.touch()

    def recent_history(self, window: int) -> List[Turn]:
        if window <= 0:
            return []
        return self.history[-window:]

    def format_history(self, limit: int = 5) -> str:
        return "\n".join(
            f"{turn.role.value.upper()}: {turn.content}"
            for turn in self.history[-limit:]
        )
