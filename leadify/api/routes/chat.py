"""
Chat Endpoints

The single conversational entry point plus conversation lifecycle actions.
"""
from fastapi import APIRouter, Depends

from leadify.api.dependencies import get_engine
from leadify.core.conversation_engine import ChatTurnRequest, ConversationEngine, TurnResult

router = APIRouter(tags=["Chat"])


@router.post("/chat", response_model=TurnResult)
async def chat_turn(request: ChatTurnRequest, engine: ConversationEngine = Depends(get_engine)):
    """
    Process one user message. Omit `conversation_id` to start a new conversation.

    Retryable provider failures return 503 (429 when rate limited) and leave the
    conversation untouched, so the same message can be resubmitted.
    """
    return await engine.handle_turn(request)


@router.get("/conversations/{conversation_id}")
async def get_conversation(conversation_id: str, engine: ConversationEngine = Depends(get_engine)):
    state = await engine.get_state(conversation_id)
    return state.model_dump(mode="json", exclude={"id"})


@router.post("/conversations/{conversation_id}/restart")
async def restart_conversation(conversation_id: str, engine: ConversationEngine = Depends(get_engine)):
    state = await engine.restart(conversation_id)
    return {
        "conversation_id": state.conversation_id,
        "stage": state.current_stage.value,
        "qualification_round": state.qualification_round,
    }


@router.post("/conversations/{conversation_id}/archive")
async def archive_conversation(conversation_id: str, engine: ConversationEngine = Depends(get_engine)):
    await engine.archive(conversation_id)
    return {"conversation_id": conversation_id, "archived": True}
