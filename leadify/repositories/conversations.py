"""
Conversation Repository
MongoDB-backed ConversationStore.
"""
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from .base import BaseRepository
from .connection import CONVERSATIONS
from ..models.base import utc_now
from ..models.conversation import ConversationState
from ..services.conversation_store import ConversationStore
from ..utils.observability import logger


class ConversationRepository(BaseRepository[ConversationState], ConversationStore):
    """
    One document per conversation, keyed by `conversation_id`.
    Requires the unique index created by `DatabaseManager.create_indexes`.
    """

    def __init__(self, database: AsyncIOMotorDatabase):
        super().__init__(database, CONVERSATIONS, ConversationState)

    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        return await self.find_one({"conversation_id": conversation_id})

    async def save(self, state: ConversationState) -> ConversationState:
        return await self.upsert({"conversation_id": state.conversation_id}, state)

    async def commit(self, state: ConversationState) -> bool:
        """
        Replace the stored document unless it is archived. An archived
        document fails the filter, the upsert then collides with the unique
        conversation_id index, and nothing is written.
        """
        state.touch()
        try:
            await self.collection.replace_one(
                {"conversation_id": state.conversation_id, "archived": {"$ne": True}},
                self._to_doc(state),
                upsert=True,
            )
        except DuplicateKeyError:
            logger.info(f"Commit skipped, {state.conversation_id} is archived")
            return False
        return True

    async def is_archived(self, conversation_id: str) -> bool:
        doc = await self.collection.find_one(
            {"conversation_id": conversation_id}, projection={"archived": 1}
        )
        return bool(doc and doc.get("archived"))

    async def archive(self, conversation_id: str) -> bool:
        result = await self.collection.update_one(
            {"conversation_id": conversation_id},
            {"$set": {"archived": True, "updated_at": utc_now()}}
        )
        return result.matched_count > 0

