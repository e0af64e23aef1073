"""
CLI Runner for the Conversation Engine
Walks a scripted buyer through the BANT questionnaire against the real models,
or lets you type the buyer's side yourself.

    python -m leadify.core.cli_runner            # scripted walk-through
    python -m leadify.core.cli_runner chat       # interactive
"""
import asyncio
import sys
from loguru import logger
from leadify.core.conversation_engine import ChatTurnRequest, ConversationEngine, TurnResult
from leadify.models.token_usage import GroupBy
from leadify.services.agent_config_store import InMemoryAgentConfigStore
from leadify.services.conversation_store import InMemoryConversationStore
from leadify.services.lead_sink import InMemoryLeadSink
from leadify.services.token_ledger import InMemoryTokenUsageStore, TokenLedger
from leadify.utils.llm_client import ModelGateway, ProviderError, retry_provider_call
from leadify.utils.observability import configure_logging

DEMO_AGENT = {
    "agent_id": "demo-agent",
    "organization_id": "demo-org",
    "display_name": "Maria of Makati Homes",
    "greeting": "Hi! I'm Maria, thanks for reaching out to Makati Homes.",
}

SCRIPTED_BUYER = [
    "Hi, I'm looking for a condo in Makati",
    "Around 25 million pesos",
    "I'm the sole decision maker",
    "residency",
    "within 3 months",
    "Samuel Jackson, 098124814122",
]


def build_demo_engine() -> tuple[ConversationEngine, TokenLedger, InMemoryLeadSink]:
    config_store = InMemoryAgentConfigStore([DEMO_AGENT])
    ledger = TokenLedger(InMemoryTokenUsageStore(), directory=config_store)
    sink = InMemoryLeadSink()
    engine = ConversationEngine(
        store=InMemoryConversationStore(),
        config_store=config_store,
        lead_sink=sink,
        gateway=ModelGateway(ledger=ledger),
    )
    return engine, ledger, sink


def print_turn(i: int, message: str, result: TurnResult) -> None:
    print(f"\n{'─' * 70}")
    print(f"🗣️  BUYER ({i}): {message}")
    print(f"{'─' * 70}")
    print(f"🧭 Intent: {result.intent.value}   Stage: {result.stage.value}")
    print(f"📊 Score: {result.score} ({result.tier.value if result.tier else 'n/a'})")
    known = {k: v for k, v in result.bant_snapshot.items() if v}
    print(f"📋 BANT: {known or 'nothing yet'}")
    print(f"\n💬 {result.response_text}")


async def print_ledger(ledger: TokenLedger) -> None:
    print(f"\n\n{'=' * 70}")
    print("🧾 Token usage by operation")
    print(f"{'=' * 70}")
    for row in await ledger.aggregate(group_by=GroupBy.OPERATION_TYPE):
        print(f"   {row.group:<24} {row.count:>3} calls {row.total_tokens:>8} tokens")
    summary = await ledger.summary()
    print(f"\n   Total: {summary.total_tokens} tokens, ${summary.cost_usd:.4f}, {summary.failed_calls} failed")


async def run_conversation():
    """Scripted BANT walk-through; retryable provider errors are retried with backoff."""
    configure_logging()

    logger.info("=" * 70)
    logger.info("🤖 Leadify Conversation Engine - Scripted Demo")
    logger.info("=" * 70)

    engine, ledger, sink = build_demo_engine()
    conversation_id = None

    for i, message in enumerate(SCRIPTED_BUYER, 1):
        request = ChatTurnRequest(
            conversation_id=conversation_id,
            agent_id=DEMO_AGENT["agent_id"],
            user_id="cli-user",
            message=message,
            source="cli",
        )
        try:
            result = await retry_provider_call(lambda: engine.handle_turn(request))
        except ProviderError as e:
            logger.error(f"❌ Failed to process message: {e}")
            break

        conversation_id = result.conversation_id
        print_turn(i, message, result)
        await asyncio.sleep(0.5)

    for lead in sink.leads.values():
        print(f"\n✅ Lead finalized: {lead.id} | {lead.tier.value} | {lead.score} pts | {lead.contact_name}")

    await print_ledger(ledger)


async def run_interactive():
    configure_logging()
    engine, ledger, _ = build_demo_engine()
    conversation_id = None
    i = 0

    print("Type a message (empty line to quit).")
    while True:
        message = await asyncio.to_thread(input, "\nyou> ")
        if not message.strip():
            break
        i += 1
        request = ChatTurnRequest(
            conversation_id=conversation_id,
            agent_id=DEMO_AGENT["agent_id"],
            user_id="cli-user",
            message=message,
            source="cli",
        )
        try:
            result = await retry_provider_call(lambda: engine.handle_turn(request))
        except ProviderError as e:
            print(f"⚠️ Model unavailable ({e.kind}), try again: {e}")
            continue
        conversation_id = result.conversation_id
        print_turn(i, message, result)

    await print_ledger(ledger)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "chat":
        asyncio.run(run_interactive())
    else:
        asyncio.run(run_conversation())
