"""
Agent Config Repository
MongoDB-backed AgentConfigStore. Profiles are managed outside this service;
this repository only reads them (plus `put` for seeding and tests).
"""
from typing import Any, List, Mapping, Optional
from motor.motor_asyncio import AsyncIOMotorDatabase

from .base import BaseRepository
from .connection import AGENT_CONFIGS
from ..models.agent_profile import AgentProfile, load_agent_profile
from ..services.agent_config_store import AgentConfigStore
from ..utils.observability import logger


class AgentConfigRepository(BaseRepository[AgentProfile], AgentConfigStore):

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, AGENT_CONFIGS, AgentProfile)

    async def put(self, data: Mapping[str, Any] | AgentProfile) -> AgentProfile:
        """
        Raises:
            ConfigInvalid: The profile is rejected and nothing is written
        """
        profile = load_agent_profile(data)
        return await self.upsert({"agent_id": profile.agent_id}, profile)

    async def get_profile(self, agent_id: str) -> AgentProfile:
        doc = await self.collection.find_one({"agent_id": agent_id}, projection={"_id": 0})
        if doc is None:
            logger.warning(f"No profile for agent {agent_id}, using default scoring config")
            return AgentProfile(agent_id=agent_id)
        return load_agent_profile(doc)

    async def organization_for(self, agent_id: str) -> Optional[str]:
        doc = await self.collection.find_one({"agent_id": agent_id}, projection={"organization_id": 1})
        return doc.get("organization_id") if doc else None

    async def agents_for_organization(self, organization_id: str) -> List[str]:
        cursor = self.collection.find({"organization_id": organization_id}, projection={"agent_id": 1})
        docs = await cursor.to_list(length=None)
        return [doc["agent_id"] for doc in docs]
