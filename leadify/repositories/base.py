"""
Generic Repository Base Class
Shared async CRUD helpers for the MongoDB-backed stores.
"""
from typing import Generic, TypeVar, Type, Optional, Dict, Any
from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase

from ..models.base import MongoBaseModel, utc_now
from ..utils.observability import logger

# Generic type for domain models
T = TypeVar("T", bound=MongoBaseModel)


class BaseRepository(Generic[T]):
    """
    Generic async repository for MongoDB collections.

    Documents are addressed by a natural key (conversation_id, agent_id...)
    rather than by ObjectId; `_id` stays whatever MongoDB assigned.

    Usage:
        class LeadRepository(BaseRepository[LeadRecord]):
            def __init__(self, database: AsyncIOMotorDatabase):
                super().__init__(database, "leads", LeadRecord)
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        collection_name: str,
        model_class: Type[T]
    ):
        self.database = database
        self.collection: AsyncIOMotorCollection = database[collection_name]
        self.model_class = model_class
        self.collection_name = collection_name

    async def create(self, document: T) -> T:
        """
        Insert a new document and populate its `id`.

        Raises:
            pymongo.errors.DuplicateKeyError: If a unique index is violated
        """
        now = utc_now()
        document.created_at = now
        document.updated_at = now

        result = await self.collection.insert_one(self._to_doc(document))

        logger.debug(
            f"Created document in {self.collection_name}",
            extra={"document_id": str(result.inserted_id)}
        )
        document.id = str(result.inserted_id)
        return document

    async def upsert(self, filter_dict: Dict[str, Any], document: T) -> T:
        """Replace the document matching `filter_dict`, inserting it if absent."""
        document.touch()
        await self.collection.replace_one(filter_dict, self._to_doc(document), upsert=True)
        return document

    async def find_one(self, filter_dict: Dict[str, Any]) -> Optional[T]:
        doc = await self.collection.find_one(filter_dict)
        if doc is None:
            return None
        return self._to_model(doc)

    def _to_doc(self, document: T) -> Dict[str, Any]:
        # Python mode keeps datetimes native for range queries
        return document.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)

    def _to_model(self, doc: Dict[str, Any]) -> T:
        """Convert a raw MongoDB document, dropping fields the model does not know."""
        if "_id" in doc:
            doc["_id"] = str(doc["_id"])

        model_fields = self.model_class.model_fields.keys()
        cleaned_doc = {
            k: v for k, v in doc.items()
            if k in model_fields or k == "_id"
        }
        return self.model_class.model_validate(cleaned_doc)
