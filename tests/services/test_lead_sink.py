"""Tests for lead emission and the CRM webhook notification."""

import pytest
from unittest.mock import AsyncMock, patch, MagicMock
import httpx

from leadify.models.bant import BANTRecord
from leadify.models.scoring_config import Tier
from leadify.models.lead import LeadRecord
from leadify.services.lead_sink import CrmWebhookLeadSink, InMemoryLeadSink, lead_key


def make_lead(conversation_id: str = "c-1", qualification_round: int = 0) -> LeadRecord:
    return LeadRecord(
        conversation_id=conversation_id,
        agent_id="agent-7",
        user_id="u-1",
        bant=BANTRecord(),
        score=92,
        tier=Tier.HOT,
        contact_name="Ana Cruz",
        qualification_round=qualification_round,
    )


class TestInMemoryLeadSink:

    async def test_emit_assigns_id(self):
        sink = InMemoryLeadSink()

        lead_id = await sink.emit(make_lead())

        assert lead_id == "lead-1"
        assert sink.leads["c-1#0"].contact_name == "Ana Cruz"

    async def test_emit_is_idempotent_per_round(self):
        sink = InMemoryLeadSink()

        first = await sink.emit(make_lead())
        again = await sink.emit(make_lead())
        next_round = await sink.emit(make_lead(qualification_round=1))

        assert first == again
        assert next_round != first
        assert len(sink.leads) == 2

    def test_lead_key(self):
        assert lead_key(make_lead("c-9", 3)) == "c-9#3"


class TestCrmWebhookLeadSink:

    @pytest.fixture
    def inner(self):
        return InMemoryLeadSink()

    async def test_without_webhook_only_stores(self, inner):
        with patch("leadify.services.lead_sink.get_settings") as mock_settings:
            mock_settings.return_value.crm_webhook_url = None
            mock_settings.return_value.crm_webhook_timeout_seconds = 5.0
            sink = CrmWebhookLeadSink(inner)

        with patch("httpx.AsyncClient") as mock_client:
            lead_id = await sink.emit(make_lead())

        assert sink.is_configured is False
        assert lead_id == "lead-1"
        mock_client.assert_not_called()

    async def test_posts_lead_to_webhook(self, inner):
        sink = CrmWebhookLeadSink(inner, webhook_url="https://crm.example.com/leads", timeout=5.0)

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.post = AsyncMock(return_value=MagicMock(status_code=200))
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=None)
            mock_client.return_value = mock_instance

            lead_id = await sink.emit(make_lead())

        mock_instance.post.assert_called_once()
        args, kwargs = mock_instance.post.call_args
        assert args[0] == "https://crm.example.com/leads"
        assert kwargs["json"]["lead_id"] == lead_id
        assert kwargs["json"]["tier"] == "hot"
        assert kwargs["timeout"] == 5.0

    async def test_webhook_failure_keeps_stored_lead(self, inner):
        sink = CrmWebhookLeadSink(inner, webhook_url="https://crm.example.com/leads", timeout=5.0)

        with patch("httpx.AsyncClient") as mock_client:
            mock_instance = AsyncMock()
            mock_instance.post = AsyncMock(side_effect=httpx.ConnectError("Connection refused"))
            mock_instance.__aenter__ = AsyncMock(return_value=mock_instance)
            mock_instance.__aexit__ = AsyncMock(return_value=None)
            mock_client.return_value = mock_instance

            lead_id = await sink.emit(make_lead())

        assert lead_id == "lead-1"
        assert len(inner.leads) == 1
