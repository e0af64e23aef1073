"""
Lead Sink

Where finalized leads go once a conversation qualifies: a storage backend,
optionally followed by a CRM webhook notification.
"""
import httpx
from abc import ABC, abstractmethod
from typing import Dict, Optional
from leadify.config import get_settings
from leadify.models.lead import LeadRecord
from leadify.utils.observability import logger


def lead_key(lead: LeadRecord) -> str:
    """One lead per conversation per qualification round (restart opens a new round)."""
    return f"{lead.conversation_id}#{lead.qualification_round}"


class LeadSink(ABC):

    @abstractmethod
    async def emit(self, lead: LeadRecord) -> str:
        """Persist a finalized lead. Idempotent per `lead_key`. Returns the lead id."""
        pass


class InMemoryLeadSink(LeadSink):

    def __init__(self):
        self.leads: Dict[str, LeadRecord] = {}

    async def emit(self, lead: LeadRecord) -> str:
        key = lead_key(lead)
        existing = self.leads.get(key)
        if existing:
            logger.debug(f"Lead {key} already emitted")
            return existing.id
        lead.id = lead.id or f"lead-{len(self.leads) + 1}"
        self.leads[key] = lead
        return lead.id


class CrmWebhookLeadSink(LeadSink):
    """
    Stores through an inner sink, then POSTs the lead to the CRM webhook.

    A webhook failure is logged and does not undo the stored lead.
    """

    def __init__(self, inner: LeadSink, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        settings = get_settings()
        self.inner = inner
        self._webhook_url = webhook_url or settings.crm_webhook_url
        self._timeout = timeout or settings.crm_webhook_timeout_seconds

    @property
    def is_configured(self) -> bool:
        return self._webhook_url is not None

    async def emit(self, lead: LeadRecord) -> str:
        lead_id = await self.inner.emit(lead)
        if not self._webhook_url:
            return lead_id

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self._webhook_url,
                    json={"lead_id": lead_id, **lead.model_dump(mode="json", exclude={"id"})},
                    timeout=self._timeout,
                )
                response.raise_for_status()
            logger.info(f"CRM notified of lead {lead_id}", extra={"conversation_id": lead.conversation_id})
        except httpx.HTTPError as e:
            logger.error(
                f"Failed to notify CRM of lead {lead_id}: {e}",
                extra={"conversation_id": lead.conversation_id, "error": str(e)}
            )
        return lead_id
