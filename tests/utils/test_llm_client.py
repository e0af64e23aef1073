"""
Tests for the model gateway.
Verifies usage accounting, ledger writes on success and failure, error
categorization and the caller-side retry helper.
"""
import math
import pytest
from unittest.mock import AsyncMock, patch

from leadify.models.intent import Intent, IntentClassification
from leadify.models.reply_response import ReplyResponse
from leadify.models.token_usage import OperationType
from leadify.services.token_ledger import InMemoryTokenUsageStore, TokenLedger
from leadify.utils.cost_tracker import CostTracker, calculate_cost
from leadify.utils.llm_client import (
    ModelGateway,
    ProviderError,
    ProviderTimeout,
    categorize_provider_error,
    estimate_tokens,
    resolve_model_name,
    retry_provider_call,
)
from leadify.utils.metrics import MetricsRegistry


class BrokenStore(InMemoryTokenUsageStore):
    async def insert(self, record):
        raise RuntimeError("connection refused")


def greeting() -> IntentClassification:
    return IntentClassification(intent=Intent.GREETING, confidence=0.9, reasoning="Says hello")


class TestGatewaySuccess:

    async def test_returns_typed_output_and_usage(self, gateway, fake_agent):
        agent = fake_agent(greeting(), usage=(200, 40))

        result = await gateway.invoke(OperationType.INTENT_CLASSIFICATION, agent, "Hello")

        assert result.output.intent == Intent.GREETING
        assert result.usage.prompt_tokens == 200
        assert result.usage.completion_tokens == 40
        assert result.usage.total_tokens == 240
        assert result.usage.estimated is False
        assert result.record_id

    async def test_writes_exactly_one_record(self, gateway, ledger, fake_agent):
        agent = fake_agent(ReplyResponse(content="Hi there!"), usage=(150, 25))

        result = await gateway.invoke(
            OperationType.CHAT_REPLY, agent, "Hello",
            conversation_id="c-1", agent_id="agent-7",
        )

        records = await ledger.records()
        assert len(records) == 1
        record = records[0]
        assert record.record_id == result.record_id
        assert record.operation_type == OperationType.CHAT_REPLY
        assert record.conversation_id == "c-1"
        assert record.agent_id == "agent-7"
        assert record.success is True
        assert record.total_tokens == 175
        assert record.model == "openai:gpt-4o-mini"
        assert record.cost_usd == pytest.approx(calculate_cost("gpt-4o-mini", 150, 25))

    async def test_missing_usage_is_estimated(self, gateway, ledger, fake_agent):
        output = ReplyResponse(content="Sure, happy to help.")
        agent = fake_agent(output, usage=None)
        prompt = "x" * 41

        result = await gateway.invoke(OperationType.CHAT_REPLY, agent, prompt)

        assert result.usage.estimated is True
        assert result.usage.prompt_tokens == 11
        assert result.usage.completion_tokens == math.ceil(len(output.model_dump_json()) / 4)
        record = (await ledger.records())[0]
        assert record.estimated is True
        assert MetricsRegistry().estimated_usage.get(operation="chat_reply") == 1

    async def test_explicit_model_name_wins(self, gateway, ledger, fake_agent):
        agent = fake_agent(greeting(), model="openai:gpt-4o")

        await gateway.invoke(OperationType.INTENT_CLASSIFICATION, agent, "Hi", model="openai:gpt-4.1-mini")

        record = (await ledger.records())[0]
        assert record.model == "openai:gpt-4.1-mini"

    async def test_deps_are_forwarded(self, gateway, fake_agent):
        agent = fake_agent(greeting())
        agent.run = AsyncMock(return_value=type("R", (), {"output": greeting()})())

        await gateway.invoke(OperationType.INTENT_CLASSIFICATION, agent, "Hi", deps={"k": "v"})

        agent.run.assert_awaited_once_with("Hi", deps={"k": "v"})

    async def test_success_updates_metrics_and_cost_tracker(self, ledger, fake_agent):
        tracker = CostTracker()
        gateway = ModelGateway(ledger=ledger, cost_tracker=tracker)

        await gateway.invoke(OperationType.CHAT_REPLY, fake_agent(ReplyResponse(content="ok")), "Hi")

        metrics = MetricsRegistry()
        assert metrics.gateway_calls.get(operation="chat_reply") == 1
        assert metrics.gateway_duration.count(operation="chat_reply") == 1
        assert metrics.tokens_total.get(operation="chat_reply", type="prompt") == 120
        assert tracker.lifetime_usage.call_count == 1
        assert tracker.per_operation_costs["chat_reply"] > 0


class TestGatewayFailures:

    async def test_failure_still_writes_a_record(self, gateway, ledger, fake_agent):
        agent = fake_agent(error=Exception("500 Internal Server Error"))
        prompt = "y" * 80

        with pytest.raises(ProviderError) as exc_info:
            await gateway.invoke(
                OperationType.BANT_EXTRACTION, agent, prompt,
                conversation_id="c-1", agent_id="agent-7",
            )

        assert exc_info.value.kind == "server_error"
        assert exc_info.value.retryable is True
        assert exc_info.value.operation_type == OperationType.BANT_EXTRACTION

        records = await ledger.records()
        assert len(records) == 1
        record = records[0]
        assert record.success is False
        assert record.completion_tokens == 0
        assert record.prompt_tokens == 20
        assert record.estimated is True
        assert "500" in record.error_message
        assert MetricsRegistry().gateway_errors.get(operation="bant_extraction", kind="server_error") == 1

    async def test_authentication_error_is_permanent(self, gateway, fake_agent):
        agent = fake_agent(error=Exception("Authentication failed: Invalid API key"))

        with pytest.raises(ProviderError) as exc_info:
            await gateway.invoke(OperationType.CHAT_REPLY, agent, "Hi")

        assert exc_info.value.kind == "authentication"
        assert exc_info.value.retryable is False

    async def test_provider_error_passes_through(self, gateway, fake_agent):
        original = ProviderError("quota", kind="rate_limit", retryable=True)
        agent = fake_agent(error=original)

        with pytest.raises(ProviderError) as exc_info:
            await gateway.invoke(OperationType.CHAT_REPLY, agent, "Hi")

        assert exc_info.value is original

    async def test_timeout_raises_provider_timeout(self, gateway, ledger, fake_agent):
        agent = fake_agent(greeting(), delay=0.5)

        with pytest.raises(ProviderTimeout) as exc_info:
            await gateway.invoke(OperationType.INTENT_CLASSIFICATION, agent, "Hello", timeout=0.01)

        assert exc_info.value.kind == "timeout"
        assert exc_info.value.retryable is True
        record = (await ledger.records())[0]
        assert record.success is False
        assert "timed out" in record.error_message

    async def test_ledger_failure_does_not_fail_the_call(self, fake_agent):
        gateway = ModelGateway(ledger=TokenLedger(BrokenStore()), cost_tracker=CostTracker())

        result = await gateway.invoke(OperationType.CHAT_REPLY, fake_agent(ReplyResponse(content="ok")), "Hi")

        assert result.output.content == "ok"
        assert result.record_id
        assert MetricsRegistry().ledger_write_failures.get(operation="chat_reply") == 1


class TestErrorCategorization:

    @pytest.mark.parametrize("message,kind,retryable", [
        ("Rate limit exceeded. Please try again later.", "rate_limit", True),
        ("HTTP 429 Too Many Requests", "rate_limit", True),
        ("Request timed out", "timeout", True),
        ("503 Service Unavailable", "server_error", True),
        ("Authentication failed: Invalid API key", "authentication", False),
        ("Invalid request: Missing required field", "invalid_request", False),
        ("Exceeded maximum retries for output validation", "malformed_response", True),
        ("Something odd happened", "unknown", True),
    ])
    def test_categorize(self, message, kind, retryable):
        assert categorize_provider_error(Exception(message)) == (kind, retryable)


class TestHelpers:

    def test_estimate_tokens_rounds_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("abcdef", chars_per_token=3) == 2

    def test_resolve_model_name(self, fake_agent):
        assert resolve_model_name(fake_agent("x", model="openai:gpt-4o")) == "openai:gpt-4o"
        assert resolve_model_name(object()) == "unknown"


@pytest.mark.asyncio
class TestRetryProviderCall:

    async def test_retries_transient_errors(self):
        call = AsyncMock(side_effect=[ProviderError("busy", kind="server_error"), "done"])

        with patch("leadify.utils.llm_client.asyncio.sleep", new=AsyncMock()) as sleep:
            result = await retry_provider_call(call, max_retries=3)

        assert result == "done"
        assert call.await_count == 2
        sleep.assert_awaited_once()

    async def test_permanent_error_is_not_retried(self):
        call = AsyncMock(side_effect=ProviderError("bad key", kind="authentication", retryable=False))

        with patch("leadify.utils.llm_client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ProviderError, match="bad key"):
                await retry_provider_call(call, max_retries=3)

        assert call.await_count == 1

    async def test_gives_up_after_max_retries(self):
        call = AsyncMock(side_effect=ProviderTimeout("slow"))

        with patch("leadify.utils.llm_client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(ProviderTimeout):
                await retry_provider_call(call, max_retries=3)

        assert call.await_count == 3
