"""
FastAPI Application

Main entry point for the Leadify API.
Handles application lifecycle, error mapping and router mounting.
"""
from contextlib import asynccontextmanager
from dataclasses import dataclass
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from leadify.api.routes import analytics_router, chat_router, health_router, metrics_router
from leadify.config import Settings, get_settings
from leadify.core.conversation_engine import ConversationArchived, ConversationEngine
from leadify.models.scoring_config import ConfigInvalid
from leadify.repositories import (
    AgentConfigRepository,
    ConversationRepository,
    LeadRepository,
    TokenUsageRepository,
    db_manager,
)
from leadify.services.agent_config_store import AgentConfigStore, InMemoryAgentConfigStore
from leadify.services.conversation_store import ConversationNotFound, InMemoryConversationStore
from leadify.services.lead_sink import CrmWebhookLeadSink, InMemoryLeadSink, LeadSink
from leadify.services.token_ledger import InMemoryTokenUsageStore, TokenLedger, set_token_ledger
from leadify.utils.llm_client import ModelGateway, ProviderError
from leadify.utils.observability import configure_logging


@dataclass
class Components:
    engine: ConversationEngine
    ledger: TokenLedger
    config_store: AgentConfigStore


async def build_components(settings: Settings) -> Components:
    """
    Wire the engine for the configured persistence backend.
    The MongoDB backend connects and ensures indexes first.
    """
    if settings.persistence_backend == "mongodb":
        await db_manager.connect()
        await db_manager.create_indexes()
        db = db_manager.database
        config_store: AgentConfigStore = AgentConfigRepository(db)
        ledger = TokenLedger(TokenUsageRepository(db), directory=config_store)
        conversation_store = ConversationRepository(db)
        sink: LeadSink = LeadRepository(db)
    else:
        config_store = InMemoryAgentConfigStore()
        ledger = TokenLedger(InMemoryTokenUsageStore(), directory=config_store)
        conversation_store = InMemoryConversationStore()
        sink = InMemoryLeadSink()

    if settings.crm_webhook_url:
        sink = CrmWebhookLeadSink(sink, settings.crm_webhook_url)

    set_token_ledger(ledger)
    engine = ConversationEngine(
        store=conversation_store,
        config_store=config_store,
        lead_sink=sink,
        gateway=ModelGateway(ledger=ledger),
    )
    return Components(engine=engine, ledger=ledger, config_store=config_store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: configure logging, build the engine and its stores.
    Shutdown: close the MongoDB client if one was opened.
    """
    settings = get_settings()
    configure_logging()
    logger.info(f"Starting Leadify API server ({settings.persistence_backend} persistence)...")

    components = await build_components(settings)
    app.state.engine = components.engine
    app.state.ledger = components.ledger
    app.state.config_store = components.config_store

    logger.info("API server ready to receive chat turns")

    yield

    logger.info("Shutting down API server...")
    if settings.persistence_backend == "mongodb":
        await db_manager.disconnect()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Leadify API",
    description="Conversational BANT lead qualification with per-call token accounting",
    version="0.4.0",
    lifespan=lifespan
)


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    if exc.kind == "rate_limit":
        code = status.HTTP_429_TOO_MANY_REQUESTS
    elif exc.retryable:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_502_BAD_GATEWAY
    return JSONResponse(
        status_code=code,
        content={"error": exc.kind, "detail": str(exc), "retryable": exc.retryable}
    )


@app.exception_handler(ConfigInvalid)
async def config_invalid_handler(request: Request, exc: ConfigInvalid):
    return JSONResponse(
        status_code=422,
        content={"error": "config_invalid", "detail": str(exc), "errors": exc.errors}
    )


@app.exception_handler(ConversationNotFound)
async def not_found_handler(request: Request, exc: ConversationNotFound):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"error": "conversation_not_found", "detail": f"Unknown conversation {exc}"}
    )


@app.exception_handler(ConversationArchived)
async def archived_handler(request: Request, exc: ConversationArchived):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"error": "conversation_archived", "detail": str(exc)}
    )


# Mount routers
app.include_router(health_router)
app.include_router(chat_router)
app.include_router(analytics_router)
app.include_router(metrics_router)
