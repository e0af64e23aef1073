"""
Human Handoff Service

Notifies a human when a conversation is handed off, either because the user
asked for a person or the assistant escalated. Notification channels are
pluggable, with Slack as the built-in implementation.
"""

import httpx
from dataclasses import dataclass
from typing import Optional, Protocol
from leadify.config import get_settings
from leadify.models.conversation import ConversationState
from leadify.utils.observability import logger


@dataclass
class HandoffRequest:
    """Details of a handoff request."""
    conversation_id: str
    agent_id: str
    contact_name: Optional[str]
    contact_phone: Optional[str]
    reason: str
    conversation_summary: str
    urgency: str = "normal"  # normal, high, critical


class HandoffNotifier(Protocol):

    async def notify(self, request: HandoffRequest) -> bool:
        """Returns True if the notification was delivered."""
        ...


class SlackHandoffNotifier:
    """Posts a Block Kit message to a Slack incoming webhook."""

    def __init__(self, webhook_url: Optional[str] = None):
        settings = get_settings()
        self._webhook_url = webhook_url or settings.slack_handoff_webhook_url

    @property
    def is_configured(self) -> bool:
        return self._webhook_url is not None

    async def notify(self, request: HandoffRequest) -> bool:
        if not self._webhook_url:
            logger.warning("Slack webhook not configured, skipping notification")
            return False

        try:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self._webhook_url,
                    json=self._build_slack_payload(request),
                    timeout=10.0
                )
                response.raise_for_status()

            logger.info(
                f"Slack handoff notification sent for conversation {request.conversation_id}",
                extra={"conversation_id": request.conversation_id, "reason": request.reason}
            )
            return True

        except httpx.HTTPError as e:
            logger.error(
                f"Failed to send Slack notification: {e}",
                extra={"conversation_id": request.conversation_id, "error": str(e)}
            )
            return False

    def _build_slack_payload(self, request: HandoffRequest) -> dict:
        urgency_emoji = {
            "normal": ":hand:",
            "high": ":warning:",
            "critical": ":rotating_light:"
        }.get(request.urgency, ":hand:")

        return {
            "blocks": [
                {
                    "type": "header",
                    "text": {
                        "type": "plain_text",
                        "text": f"{urgency_emoji} Lead wants a human",
                        "emoji": True
                    }
                },
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*Name:*\n{request.contact_name or 'Unknown'}"},
                        {"type": "mrkdwn", "text": f"*Phone:*\n{request.contact_phone or 'Not shared'}"},
                        {"type": "mrkdwn", "text": f"*Agent:*\n{request.agent_id}"},
                        {"type": "mrkdwn", "text": f"*Conversation:*\n{request.conversation_id}"},
                    ]
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"*Reason:*\n{request.reason}"}
                },
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": f"*Recent Conversation:*\n```{request.conversation_summary[:500]}```"
                    }
                },
            ]
        }


class LogOnlyNotifier:
    """Fallback notifier used when no external channel is configured."""

    async def notify(self, request: HandoffRequest) -> bool:
        logger.warning(
            f"Handoff requested (no notifier configured): {request.conversation_id}",
            extra={
                "conversation_id": request.conversation_id,
                "contact_name": request.contact_name,
                "reason": request.reason,
                "urgency": request.urgency
            }
        )
        return True


class HandoffService:
    """
    Usage:
        service = HandoffService()
        await service.initiate_handoff(state, reason="User asked for a human")
    """

    def __init__(self, notifier: Optional[HandoffNotifier] = None):
        if notifier:
            self._notifier = notifier
        else:
            slack = SlackHandoffNotifier()
            self._notifier = slack if slack.is_configured else LogOnlyNotifier()

    async def initiate_handoff(
        self,
        state: ConversationState,
        reason: str,
        urgency: str = "normal"
    ) -> bool:
        """
        Send the handoff notification. The caller owns the stage change.

        Returns:
            True if the notification was delivered
        """
        logger.info(
            f"Initiating handoff for conversation {state.conversation_id}",
            extra={"conversation_id": state.conversation_id, "reason": reason, "urgency": urgency}
        )

        request = HandoffRequest(
            conversation_id=state.conversation_id,
            agent_id=state.agent_id,
            contact_name=state.bant.contact_name,
            contact_phone=state.bant.contact_phone,
            reason=reason,
            conversation_summary=state.format_history(limit=5),
            urgency=urgency
        )

        return await self._notifier.notify(request)

    def get_handoff_message(self, contact_name: Optional[str] = None) -> str:
        greeting = f"Thanks, {contact_name.split()[0]}! " if contact_name else ""
        return (
            f"{greeting}I'm connecting you with one of our specialists who can better "
            "assist you. They'll be with you shortly!"
        )


_service: Optional[HandoffService] = None


def get_handoff_service() -> HandoffService:
    """Get or create the handoff service singleton."""
    global _service
    if _service is None:
        _service = HandoffService()
    return _service
