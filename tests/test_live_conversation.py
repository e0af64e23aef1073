"""
Live smoke test against the real model provider.
Runs only when the project .env carries a real OPENAI_API_KEY.
"""
import pytest
from pathlib import Path
from dotenv import dotenv_values

from leadify.core.conversation_engine import ChatTurnRequest, ConversationEngine
from leadify.models.conversation import ConversationStage
from leadify.models.token_usage import GroupBy
from leadify.services.handoff_service import HandoffService, LogOnlyNotifier
from leadify.utils.llm_client import ModelGateway

ENV_PATH = Path(__file__).parent.parent / ".env"
API_KEY = dotenv_values(ENV_PATH).get("OPENAI_API_KEY") if ENV_PATH.exists() else None

pytestmark = pytest.mark.skipif(not API_KEY, reason="No OPENAI_API_KEY in .env")


async def test_budget_answer_is_captured(monkeypatch, config_store, ledger, conversation_store, lead_sink):
    monkeypatch.setenv("OPENAI_API_KEY", API_KEY)
    engine = ConversationEngine(
        store=conversation_store,
        config_store=config_store,
        lead_sink=lead_sink,
        gateway=ModelGateway(ledger=ledger),
        handoff_service=HandoffService(notifier=LogOnlyNotifier()),
    )

    def chat(message: str) -> ChatTurnRequest:
        return ChatTurnRequest(conversation_id="live-1", agent_id="agent-7", user_id="u-1", message=message)

    await engine.handle_turn(chat("Hi, I'm looking for a condo in Makati"))
    result = await engine.handle_turn(chat("My budget is around 25 million pesos"))

    assert result.bant_snapshot["budget"] is not None
    assert result.stage.order > ConversationStage.AWAITING_BUDGET.order
    operations = {r.group for r in await ledger.aggregate(group_by=GroupBy.OPERATION_TYPE)}
    assert {"intent_classification", "bant_extraction", "chat_reply"} <= operations
