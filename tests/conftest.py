import os

os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

import asyncio
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from leadify.agents.bant_extractor import BantExtractor
from leadify.agents.intent_router import IntentRouter
from leadify.agents.responder import Responder
from leadify.core.conversation_engine import ConversationEngine
from leadify.models.conversation import ConversationState
from leadify.models.extraction_response import NormalizedBantValue, RawBantExtraction
from leadify.models.reply_response import ReplyResponse
from leadify.services.agent_config_store import InMemoryAgentConfigStore
from leadify.services.conversation_store import InMemoryConversationStore
from leadify.services.handoff_service import HandoffService
from leadify.services.lead_sink import InMemoryLeadSink
from leadify.services.token_ledger import InMemoryTokenUsageStore, TokenLedger
from leadify.utils.cost_tracker import CostTracker
from leadify.utils.llm_client import ModelGateway
from leadify.utils.metrics import MetricsRegistry


class FakeAgent:
    """
    Stands in for a pydantic-ai Agent: `async run(prompt)` returning an
    object with `.output` and, unless usage=None, a `.usage()` report.

    Outputs are served in order and the last one repeats. A callable output
    is called with the prompt.
    """

    def __init__(self, *outputs, usage=(120, 30), error=None, delay=0.0, model="openai:gpt-4o-mini"):
        self.outputs = list(outputs)
        self.usage = usage
        self.error = error
        self.delay = delay
        self.model = model
        self.prompts = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def run(self, prompt, deps=None):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

        output = self.outputs.pop(0) if len(self.outputs) > 1 else self.outputs[0]
        if callable(output):
            output = output(prompt)

        if self.usage is None:
            return SimpleNamespace(output=output)
        prompt_tokens, completion_tokens = self.usage
        return SimpleNamespace(
            output=output,
            usage=lambda: SimpleNamespace(input_tokens=prompt_tokens, output_tokens=completion_tokens),
        )


@pytest.fixture(autouse=True)
def reset_metrics():
    MetricsRegistry().reset()
    yield


@pytest.fixture
def fake_agent():
    """The FakeAgent class, for building scripted model agents."""
    return FakeAgent


@pytest.fixture
def config_store():
    return InMemoryAgentConfigStore([
        {"agent_id": "agent-7", "organization_id": "org-1", "display_name": "Maria"},
        {"agent_id": "agent-8", "organization_id": "org-1"},
        {"agent_id": "agent-9", "organization_id": "org-2"},
    ])


@pytest.fixture
def ledger(config_store):
    return TokenLedger(InMemoryTokenUsageStore(), directory=config_store)


@pytest.fixture
def gateway(ledger):
    return ModelGateway(ledger=ledger, cost_tracker=CostTracker(), timeout_seconds=5)


@pytest.fixture
def conversation_store():
    return InMemoryConversationStore()


@pytest.fixture
def lead_sink():
    return InMemoryLeadSink()


@pytest.fixture
def handoff_notifier():
    notifier = AsyncMock()
    notifier.notify = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def make_state():
    def _make(stage=None, conversation_id="c-1", agent_id="agent-7", **kwargs):
        state = ConversationState(conversation_id=conversation_id, agent_id=agent_id, user_id="u-1", **kwargs)
        if stage is not None:
            state.current_stage = stage
        return state
    return _make


@pytest.fixture
def build_engine(gateway, config_store, conversation_store, lead_sink, handoff_notifier):
    """
    Engine wired to scripted agents. Extraction defaults to "nothing found",
    normalization to "unparseable" and replies to a fixed line.
    """
    def _build(router_agent, extractor_agent=None, responder_agent=None, normalizer_agent=None, sink=None):
        return ConversationEngine(
            store=conversation_store,
            config_store=config_store,
            lead_sink=sink or lead_sink,
            gateway=gateway,
            router=IntentRouter(gateway, agent=router_agent),
            extractor=BantExtractor(
                gateway,
                agent=extractor_agent or FakeAgent(RawBantExtraction()),
                normalizer_agent=normalizer_agent or FakeAgent(NormalizedBantValue(parseable=False)),
            ),
            responder=Responder(gateway, agent=responder_agent or FakeAgent(ReplyResponse(content="Got it!"))),
            handoff_service=HandoffService(notifier=handoff_notifier),
        )
    return _build
