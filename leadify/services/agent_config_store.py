"""
Agent Configuration Store

Read-only view of the externally managed agent profiles (scoring config,
custom questions, organization). Profiles are re-read on every turn so that
configuration changes apply to the very next message.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional
from leadify.models.agent_profile import AgentProfile, load_agent_profile
from leadify.utils.observability import logger


class AgentConfigStore(ABC):
    """
    Also serves as the ledger's agent directory (agent -> organization join).
    """

    @abstractmethod
    async def get_profile(self, agent_id: str) -> AgentProfile:
        """
        Raises:
            ConfigInvalid: If the stored profile fails validation
        """
        pass

    @abstractmethod
    async def organization_for(self, agent_id: str) -> Optional[str]:
        pass

    @abstractmethod
    async def agents_for_organization(self, organization_id: str) -> List[str]:
        pass


class InMemoryAgentConfigStore(AgentConfigStore):
    """
    Keeps raw profile documents and validates them on write and on every read.

    Usage:
        store = InMemoryAgentConfigStore()
        store.put({"agent_id": "agent-1", "organization_id": "org-1"})
        profile = await store.get_profile("agent-1")
    """

    def __init__(self, profiles: Optional[List[Mapping[str, Any]]] = None):
        self._profiles: Dict[str, Dict[str, Any]] = {}
        for data in profiles or []:
            self.put(data)

    def put(self, data: Mapping[str, Any] | AgentProfile) -> AgentProfile:
        """Validates eagerly; an invalid profile is never stored."""
        profile = load_agent_profile(data)
        self._profiles[profile.agent_id] = profile.model_dump(by_alias=True)
        logger.info(f"Agent profile stored: {profile.agent_id}")
        return profile

    async def get_profile(self, agent_id: str) -> AgentProfile:
        data = self._profiles.get(agent_id)
        if data is None:
            logger.warning(f"No profile for agent {agent_id}, using default scoring config")
            return AgentProfile(agent_id=agent_id)
        return load_agent_profile(data)

    async def organization_for(self, agent_id: str) -> Optional[str]:
        data = self._profiles.get(agent_id)
        return data.get("organization_id") if data else None

    async def agents_for_organization(self, organization_id: str) -> List[str]:
        return [
            agent_id for agent_id, data in self._profiles.items()
            if data.get("organization_id") == organization_id
        ]
