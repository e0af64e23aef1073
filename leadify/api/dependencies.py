"""
FastAPI Dependencies

Accessors for the collaborators built at startup and stored on app.state.
"""
from fastapi import HTTPException, Request, status

from leadify.core.conversation_engine import ConversationEngine
from leadify.services.token_ledger import TokenLedger


def get_engine(request: Request) -> ConversationEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Conversation engine not initialized"
        )
    return engine


def get_ledger(request: Request) -> TokenLedger:
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Token ledger not initialized"
        )
    return ledger
