"""
Lead Repository
Finalized lead storage; the MongoDB LeadSink.
"""
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from .base import BaseRepository
from .connection import LEADS
from ..models.lead import LeadRecord
from ..services.lead_sink import LeadSink
from ..utils.observability import logger


class LeadRepository(BaseRepository[LeadRecord], LeadSink):
    """
    One document per conversation and qualification round, enforced by a
    unique index so a retried emission returns the existing lead.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, LEADS, LeadRecord)

    async def emit(self, lead: LeadRecord) -> str:
        key = {"conversation_id": lead.conversation_id, "qualification_round": lead.qualification_round}
        try:
            created = await self.create(lead)
        except DuplicateKeyError:
            existing = await self.find_one(key)
            logger.debug(f"Lead for {lead.conversation_id} already stored as {existing.id}")
            return existing.id

        logger.info(f"Lead stored: {created.id} ({created.tier.value}, {created.score} pts)")
        return created.id

